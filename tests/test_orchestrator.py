import os
from decimal import Decimal

import pytest
from sqlalchemy.exc import SQLAlchemyError

from conftest import SIGNATURE, make_rep
from salesflow import db
from salesflow.errors import (
    NotFound,
    PartialInconsistency,
    StageNotReachable,
    UpstreamFailure,
    ValidationFailed,
)
from salesflow.models import Estimate, Mockup, SalesSession
from salesflow.orchestrator import WorkflowOrchestrator
from salesflow.pricing.catalog import CatalogResolver
from salesflow.workflow.stages import Stage, compute_stage

ITEMS = [
    {'name': 'Tree Planting (small)', 'category': 'trees', 'quantity': 2,
     'selected_price': 100, 'low_price': 80, 'high_price': 120, 'unit': 'each'},
    {'name': 'Mulch Installation', 'category': 'maintenance', 'quantity': 1,
     'selected_price': 50.5, 'low_price': 40, 'high_price': 60, 'unit': 'sq ft'},
]


def storage_files(app, bucket):
    path = os.path.join(app.config['STORAGE_DIR'], bucket)
    return sorted(os.listdir(path)) if os.path.isdir(path) else []


def at_client_info(flow):
    s = flow.create_session()
    flow.update_session(s.id, {'client_name': 'Jane Doe', 'client_email': 'jane@example.com'})
    return s


def at_photo(flow):
    s = at_client_info(flow)
    flow.upload_photo(s.id, b'jpeg-bytes', 'image/jpeg')
    return s


def at_final_mockup(flow):
    s = at_photo(flow)
    m = flow.generate_mockup(s.id)
    flow.mark_mockup_final(s.id, m.id)
    return s


def at_estimate(flow):
    s = at_final_mockup(flow)
    flow.save_estimate(s.id, ITEMS, discount_percent=10, tax_percent=8)
    return s


@pytest.fixture
def flow(app, rep):
    return WorkflowOrchestrator(owner_id=rep.id)


def test_new_session_is_draft(flow):
    s = flow.create_session()
    assert s.client_name == 'New Client'
    assert s.status == 'draft'
    pos = compute_stage(s)
    assert pos.current == Stage.DRAFT
    assert pos.max_reachable == Stage.DRAFT


def test_update_session_validates_before_writing(flow):
    s = flow.create_session()
    with pytest.raises(ValidationFailed):
        flow.update_session(s.id, {'client_name': 'Jane', 'client_email': 'not-an-email'})
    with pytest.raises(ValidationFailed):
        flow.update_session(s.id, {'client_name': '   '})
    with pytest.raises(ValidationFailed):
        flow.update_session(s.id, {'client_name': 'Jane', 'client_phone': 'call me'})
    db.session.refresh(s)
    assert s.client_name == 'New Client'

    flow.update_session(s.id, {'client_name': ' Jane ', 'client_phone': '(555) 123-4567'})
    assert s.client_name == 'Jane'
    assert s.client_phone == '(555) 123-4567'
    assert compute_stage(s).max_reachable == Stage.PHOTO_UPLOADED


def test_photo_upload_requires_client_info(app, flow):
    s = flow.create_session()
    with pytest.raises(StageNotReachable) as exc:
        flow.upload_photo(s.id, b'jpeg-bytes', 'image/jpeg')
    assert exc.value.max_reachable == Stage.DRAFT
    assert storage_files(app, 'session-photos') == []
    assert s.original_image_url is None


def test_photo_upload_stores_and_promotes(app, flow):
    s = at_photo(flow)
    assert s.status == 'photo_uploaded'
    assert s.original_image_url.startswith('http://files.test/session-photos/session-')
    assert len(storage_files(app, 'session-photos')) == 1


def test_photo_upload_rejects_wrong_type_and_size(app, flow):
    s = at_client_info(flow)
    with pytest.raises(ValidationFailed):
        flow.upload_photo(s.id, b'%PDF-1.4', 'application/pdf')
    app.config['MAX_UPLOAD_BYTES'] = 4
    with pytest.raises(ValidationFailed):
        flow.upload_photo(s.id, b'12345', 'image/png')
    assert storage_files(app, 'session-photos') == []


def test_fresh_session_cannot_generate_mockup(flow, fakes):
    s = flow.create_session()
    assert compute_stage(s).max_reachable == Stage.DRAFT
    with pytest.raises(StageNotReachable) as exc:
        flow.generate_mockup(s.id)
    assert exc.value.max_reachable == Stage.DRAFT
    assert fakes['images'].prompts == []
    assert Mockup.query.filter_by(session_id=s.id).count() == 0


def test_generate_mockup_stage_gate(flow, fakes):
    s = at_client_info(flow)
    with pytest.raises(StageNotReachable):
        flow.generate_mockup(s.id)
    assert fakes['images'].prompts == []


def test_generate_mockup_persists_non_final(flow, fakes):
    s = at_photo(flow)
    m = flow.generate_mockup(s.id, prompt='add a stone path', custom_instructions='drought tolerant')
    assert m.is_final is False
    assert m.ai_provider == 'openai-dalle3'
    assert 'Specific Request: add a stone path' in fakes['images'].prompts[0]
    assert 'Additional Requirements: drought tolerant' in fakes['images'].prompts[0]
    assert s.final_mockup_url is None
    assert s.status == 'photo_uploaded'


def test_generate_mockup_upstream_failure_leaves_no_rows(flow, fakes):
    s = at_photo(flow)
    fakes['images'].fail = True
    with pytest.raises(UpstreamFailure):
        flow.generate_mockup(s.id)
    assert Mockup.query.filter_by(session_id=s.id).count() == 0


def test_mark_final_keeps_exactly_one(flow):
    s = at_photo(flow)
    first = flow.generate_mockup(s.id)
    second = flow.generate_mockup(s.id)

    flow.mark_mockup_final(s.id, first.id)
    assert s.final_mockup_url == first.image_url
    assert s.status == 'mockup_created'

    flow.mark_mockup_final(s.id, second.id)
    finals = Mockup.query.filter_by(session_id=s.id, is_final=True).all()
    assert [m.id for m in finals] == [second.id]
    assert s.final_mockup_url == second.image_url


def test_mark_final_rejects_foreign_mockup(flow):
    a = at_photo(flow)
    b = at_photo(flow)
    m = flow.generate_mockup(b.id)
    with pytest.raises(NotFound):
        flow.mark_mockup_final(a.id, m.id)


def test_mark_final_reports_failed_step_and_rerun_converges(flow, monkeypatch):
    s = at_photo(flow)
    first = flow.generate_mockup(s.id)
    second = flow.generate_mockup(s.id)
    flow.mark_mockup_final(s.id, first.id)

    def broken(self, mockup):
        raise SQLAlchemyError('connection reset')

    monkeypatch.setattr(WorkflowOrchestrator, '_set_final_flag', broken)
    with pytest.raises(PartialInconsistency) as exc:
        flow.mark_mockup_final(s.id, second.id)
    assert exc.value.step == 'set_final_flag'
    assert exc.value.to_dict()['step'] == 'set_final_flag'
    # first step committed, so no mockup is final now
    assert Mockup.query.filter_by(session_id=s.id, is_final=True).count() == 0

    monkeypatch.undo()
    flow.mark_mockup_final(s.id, second.id)
    finals = Mockup.query.filter_by(session_id=s.id, is_final=True).all()
    assert [m.id for m in finals] == [second.id]
    assert s.final_mockup_url == second.image_url


def test_save_estimate_computes_totals(flow):
    s = at_estimate(flow)
    est = Estimate.query.filter_by(session_id=s.id).one()
    data = est.to_dict()
    assert data['subtotal'] == 250.5
    assert data['discount_amount'] == 25.05
    assert data['tax_amount'] == 18.04
    assert data['final_amount'] == 243.49
    assert data['low_estimate'] == 200.0
    assert data['high_estimate'] == 300.0
    assert est.items[0]['quantity'] == 2
    assert s.status == 'estimate_generated'


def test_save_estimate_accepts_camel_case_items(flow):
    s = at_final_mockup(flow)
    est = flow.save_estimate(s.id, [{'name': 'Lighting', 'quantity': 3, 'selectedPrice': '200',
                                    'lowPrice': 200, 'highPrice': 400}])
    assert Decimal(str(est.final_amount)) == Decimal('600.00')


@pytest.mark.parametrize('items, discount, tax', [
    ([], 0, 0),
    ([{'name': 'Mulch', 'quantity': 0, 'selected_price': 5}], 0, 0),
    ([{'name': 'Mulch', 'quantity': 1.5, 'selected_price': 5}], 0, 0),
    ([{'name': 'Mulch', 'quantity': 1, 'selected_price': -5}], 0, 0),
    ([{'name': '', 'quantity': 1, 'selected_price': 5}], 0, 0),
    ([{'name': 'Mulch', 'quantity': 1, 'selected_price': 'lots'}], 0, 0),
    (ITEMS, 101, 0),
    (ITEMS, 0, -1),
    (ITEMS, 'ten', 0),
    ([{'name': 'Mulch', 'quantity': 1, 'selected_price': float('nan')}], 0, 0),
    ([{'name': 'Mulch', 'quantity': 1, 'selected_price': float('inf')}], 0, 0),
    ([{'name': 'Mulch', 'quantity': 1, 'selected_price': 5, 'high_price': float('inf')}], 0, 0),
])
def test_save_estimate_rejects_bad_input(flow, items, discount, tax):
    s = at_final_mockup(flow)
    with pytest.raises(ValidationFailed):
        flow.save_estimate(s.id, items, discount_percent=discount, tax_percent=tax)
    assert Estimate.query.filter_by(session_id=s.id).count() == 0
    assert s.status == 'mockup_created'


def test_save_estimate_requires_final_mockup(flow):
    s = at_photo(flow)
    with pytest.raises(StageNotReachable):
        flow.save_estimate(s.id, ITEMS)


def test_resaving_estimate_updates_in_place(flow):
    s = at_estimate(flow)
    first = Estimate.query.filter_by(session_id=s.id).one()
    flow.save_estimate(s.id, ITEMS[:1])
    again = Estimate.query.filter_by(session_id=s.id).all()
    assert [e.id for e in again] == [first.id]
    assert again[0].to_dict()['final_amount'] == 200.0


def test_reupload_photo_does_not_regress_status(flow):
    s = at_estimate(flow)
    flow.upload_photo(s.id, b'new-jpeg', 'image/jpeg')
    assert s.status == 'estimate_generated'


def test_unsigned_contract_sets_pdf_only(app, flow, fakes):
    s = at_estimate(flow)
    est = flow.generate_contract(s.id)
    assert est.contract_pdf_url.startswith('http://files.test/contracts/contract-')
    assert est.signed_at is None
    assert s.status == 'estimate_generated'
    assert fakes['mailer'].sent == []
    (name,) = storage_files(app, 'contracts')
    with open(os.path.join(app.config['STORAGE_DIR'], 'contracts', name), 'rb') as fh:
        assert fh.read(4) == b'%PDF'


def test_signed_contract_notifies_client_and_team(flow, fakes):
    s = at_estimate(flow)
    est = flow.generate_contract(s.id, signature_data=SIGNATURE)
    assert est.signed_at is not None
    assert est.signature_method == 'in_app'
    assert s.status == 'contract_signed'
    recipients = [m['to'] for m in fakes['mailer'].sent]
    assert recipients == ['jane@example.com', 'team@gardensofbabylon.com']
    assert fakes['mailer'].sent[0]['subject'] == 'Contract Signed - Thank You! - Jane Doe'
    assert compute_stage(s, est).max_reachable == Stage.COMPLETED


def test_email_failure_does_not_fail_signing(flow, fakes):
    s = at_estimate(flow)
    fakes['mailer'].fail = True
    est = flow.generate_contract(s.id, signature_data=SIGNATURE)
    assert est.signed_at is not None
    assert s.status == 'contract_signed'


def test_contract_rejects_bad_signature(flow):
    s = at_estimate(flow)
    with pytest.raises(ValidationFailed):
        flow.generate_contract(s.id, signature_data='data:image/png;base64,@@@')
    with pytest.raises(ValidationFailed):
        flow.generate_contract(s.id, signature_data='hello')
    assert Estimate.query.filter_by(session_id=s.id).one().signed_at is None


def test_signed_estimate_is_frozen(flow):
    s = at_estimate(flow)
    flow.generate_contract(s.id, signature_data=SIGNATURE)
    with pytest.raises(ValidationFailed):
        flow.save_estimate(s.id, ITEMS)
    with pytest.raises(ValidationFailed):
        flow.generate_contract(s.id, signature_data=SIGNATURE)


def test_upload_signed_contract(flow, fakes):
    s = at_estimate(flow)
    with pytest.raises(ValidationFailed):
        flow.upload_signed_contract(s.id, b'jpeg', 'image/jpeg')
    est = flow.upload_signed_contract(s.id, b'%PDF-1.4 signed', 'application/pdf')
    assert est.signature_method == 'uploaded'
    assert est.contract_pdf_url.startswith('http://files.test/contracts/signed-contract-')
    assert s.status == 'contract_signed'
    assert len(fakes['mailer'].sent) == 2


def test_complete_requires_signature_and_is_idempotent(flow, fakes):
    s = at_estimate(flow)
    with pytest.raises(StageNotReachable):
        flow.complete_session(s.id)

    flow.generate_contract(s.id, signature_data=SIGNATURE)
    fakes['mailer'].sent.clear()
    flow.complete_session(s.id)
    assert s.status == 'completed'
    assert [m['subject'] for m in fakes['mailer'].sent] == ['Project Complete - Thank You! - Jane Doe']

    flow.complete_session(s.id)
    assert s.status == 'completed'
    assert len(fakes['mailer'].sent) == 1


def test_navigate_back_and_forward(flow):
    s = at_estimate(flow)
    flow.navigate(s.id, 1)
    assert s.status == 'draft'
    flow.navigate(s.id, 'estimate_generated')
    assert s.status == 'estimate_generated'
    with pytest.raises(StageNotReachable):
        flow.navigate(s.id, Stage.COMPLETED)
    with pytest.raises(ValidationFailed):
        flow.navigate(s.id, 'nowhere')


def test_remove_photo_cascades_mockups(app, flow):
    s = at_final_mockup(flow)
    flow.remove_photo(s.id)
    assert s.original_image_url is None
    assert s.final_mockup_url is None
    assert Mockup.query.filter_by(session_id=s.id).count() == 0
    assert storage_files(app, 'session-photos') == []
    assert compute_stage(s).max_reachable == Stage.PHOTO_UPLOADED


def test_delete_session_removes_dependents(flow):
    s = at_estimate(flow)
    sid = s.id
    flow.delete_session(sid)
    assert db.session.get(SalesSession, sid) is None
    assert Mockup.query.filter_by(session_id=sid).count() == 0
    assert Estimate.query.filter_by(session_id=sid).count() == 0


def test_other_reps_sessions_are_not_found(app, flow):
    s = at_client_info(flow)
    other = WorkflowOrchestrator(owner_id=make_rep('other@example.com', 'Other').id)
    with pytest.raises(NotFound):
        other.update_session(s.id, {'client_name': 'Hijack'})
    with pytest.raises(NotFound):
        other.delete_session(s.id)
    assert other.list_sessions() == []
    assert [x.id for x in flow.list_sessions()] == [s.id]


def test_send_notification_estimate_email(flow, fakes):
    s = at_estimate(flow)
    message_id = flow.send_notification('estimate', s.id)
    assert message_id == 'msg-1'
    sent = fakes['mailer'].sent[0]
    assert sent['subject'] == 'Your Landscaping Estimate - Jane Doe'
    assert '$243.49' in sent['html']


def test_send_notification_surfaces_failures(flow, fakes):
    s = at_client_info(flow)
    with pytest.raises(NotFound):
        flow.send_notification('estimate', s.id)
    fakes['mailer'].fail = True
    with pytest.raises(UpstreamFailure):
        flow.send_notification('contract_ready', s.id)


def test_failed_commit_removes_stored_photo(app, flow, monkeypatch):
    s = at_client_info(flow)

    def broken_commit():
        raise SQLAlchemyError('disk I/O error')

    monkeypatch.setattr(db.session, 'commit', broken_commit)
    with pytest.raises(UpstreamFailure) as exc:
        flow.upload_photo(s.id, b'jpeg-bytes', 'image/jpeg')
    monkeypatch.undo()
    assert exc.value.service == 'datastore'
    assert storage_files(app, 'session-photos') == []


def test_failed_commit_removes_stored_contract(app, flow, monkeypatch):
    s = at_estimate(flow)

    def broken_commit():
        raise SQLAlchemyError('disk I/O error')

    monkeypatch.setattr(db.session, 'commit', broken_commit)
    with pytest.raises(UpstreamFailure):
        flow.upload_signed_contract(s.id, b'%PDF-1.4 signed', 'application/pdf')
    monkeypatch.undo()
    assert storage_files(app, 'contracts') == []


def test_fetch_pricing_uses_configured_catalog(app, rep):
    class Fixed:
        source = 'fixed'

        def fetch(self, category=None):
            return [{'name': 'Sod', 'category': category}]

    flow = WorkflowOrchestrator(owner_id=rep.id, catalog=CatalogResolver([Fixed()]))
    assert flow.fetch_pricing('lawn') == ([{'name': 'Sod', 'category': 'lawn'}], 'fixed')
