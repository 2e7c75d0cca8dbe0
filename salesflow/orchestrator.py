# salesflow/orchestrator.py
"""Workflow orchestration.

:class:`WorkflowOrchestrator` sequences the side effects that go with each
workflow stage: blob uploads, image generation, estimate persistence,
contract rendering and notification emails.  Every stage operation is gated
through :func:`salesflow.workflow.stages.ensure_reachable` and validated
before anything is written.  Notifications are dispatched only after the
primary change has been committed and never fail the operation.
"""

from __future__ import annotations

import binascii
import logging
import mimetypes
import re
import time
from decimal import Decimal, InvalidOperation
from typing import Optional

from flask import current_app
from sqlalchemy.exc import SQLAlchemyError

from salesflow import db, notifications
from salesflow.errors import (
    NotFound,
    PartialInconsistency,
    UpstreamFailure,
    ValidationFailed,
)
from salesflow.estimates.calculator import LineItem, compute_totals
from salesflow.integrations.contracts import decode_signature, render_contract
from salesflow.integrations.images import build_mockup_prompt
from salesflow.integrations.storage import CONTRACTS_BUCKET, PHOTOS_BUCKET
from salesflow.models import (
    PLACEHOLDER_CLIENT_NAME,
    Estimate,
    Mockup,
    SalesSession,
    utcnow,
)
from salesflow.pricing.catalog import CatalogResolver
from salesflow.workflow.stages import (
    Stage,
    WorkflowContext,
    advance,
    compute_stage,
    ensure_reachable,
    promote,
)

logger = logging.getLogger(__name__)

CLIENT_FIELDS = ('client_name', 'client_email', 'client_phone', 'client_address', 'notes')
EMAIL_RE = re.compile(r'^[^\s@]+@[^\s@]+\.[^\s@]+$')
PHONE_RE = re.compile(r'^\+?[1-9]\d{0,15}$')
PHONE_STRIP_RE = re.compile(r'[\s\-().]')


def _stamp() -> int:
    return int(time.time() * 1000)


def _extension(content_type: str, default: str) -> str:
    ext = mimetypes.guess_extension((content_type or '').split(';')[0].strip())
    return ext or default


class WorkflowOrchestrator:
    """Coordinates one representative's sessions.

    Collaborators default to the app's registered integrations; pass them
    explicitly to use fakes.  When ``owner_id`` is set, sessions belonging to
    other representatives are reported as not found.
    """

    def __init__(self, owner_id: Optional[str] = None, blobs=None, images=None,
                 mailer=None, catalog: Optional[CatalogResolver] = None) -> None:
        from salesflow.integrations import collaborator
        self.owner_id = owner_id
        self.blobs = blobs or collaborator('blobs')
        self.images = images or collaborator('images')
        self.mailer = mailer or collaborator('mailer')
        self.catalog = catalog or CatalogResolver()

    # ------------------------------------------------------------------
    # lookups
    # ------------------------------------------------------------------
    def get_session(self, session_id: str) -> SalesSession:
        session = db.session.get(SalesSession, session_id)
        if session is None or (self.owner_id and session.sales_rep_id != self.owner_id):
            raise NotFound(f"Session {session_id} not found")
        return session

    def get_estimate(self, session_id: str) -> Optional[Estimate]:
        return (
            Estimate.query.filter_by(session_id=session_id)
            .order_by(Estimate.created_at)
            .first()
        )

    def list_sessions(self):
        query = SalesSession.query
        if self.owner_id:
            query = query.filter_by(sales_rep_id=self.owner_id)
        return query.order_by(SalesSession.created_at.desc()).all()

    def list_mockups(self, session_id: str):
        self.get_session(session_id)
        return (
            Mockup.query.filter_by(session_id=session_id)
            .order_by(Mockup.created_at)
            .all()
        )

    def describe(self, session_id: str) -> dict:
        session = self.get_session(session_id)
        estimate = self.get_estimate(session_id)
        context = WorkflowContext.from_models(session, estimate)
        return {
            'session': session.to_dict(),
            'estimate': estimate.to_dict() if estimate else None,
            'workflow': compute_stage(session, estimate).to_dict(),
            'context': context.to_dict(),
        }

    # ------------------------------------------------------------------
    # helpers
    # ------------------------------------------------------------------
    def _gate(self, session: SalesSession, stage: Stage) -> Optional[Estimate]:
        estimate = self.get_estimate(session.id)
        ensure_reachable(session, stage, estimate)
        return estimate

    def _commit(self, written_url: Optional[str] = None) -> None:
        """Commit; on failure drop the blob this change would have referenced."""
        try:
            db.session.commit()
        except SQLAlchemyError as e:
            db.session.rollback()
            self._discard_blob(written_url)
            raise UpstreamFailure('datastore', str(e)) from e

    def _check_upload(self, data: bytes, content_type: str, allowed) -> None:
        if not data:
            raise ValidationFailed('Uploaded file is empty')
        if not allowed(content_type or ''):
            raise ValidationFailed(f"Unsupported file type {content_type!r}")
        limit = current_app.config['MAX_UPLOAD_BYTES']
        if len(data) > limit:
            raise ValidationFailed(f"File size must be less than {limit // (1024 * 1024)}MB")

    def _discard_blob(self, url: Optional[str]) -> None:
        """Best-effort removal of a stored object."""
        located = self.blobs.key_from_url(url) if url else None
        if not located:
            return
        try:
            self.blobs.delete(*located)
        except UpstreamFailure as e:
            logger.warning("could not delete %s: %s", url, e)

    # ------------------------------------------------------------------
    # stage 1: client info
    # ------------------------------------------------------------------
    def create_session(self, owner_id: Optional[str] = None) -> SalesSession:
        owner = owner_id or self.owner_id
        if not owner:
            raise ValidationFailed('A session needs an owning representative')
        session = SalesSession(
            sales_rep_id=owner,
            client_name=PLACEHOLDER_CLIENT_NAME,
            status=Stage.DRAFT.status,
        )
        db.session.add(session)
        self._commit()
        logger.info("created session %s for rep %s", session.id, owner)
        return session

    def update_session(self, session_id: str, fields: dict) -> SalesSession:
        session = self.get_session(session_id)
        self._gate(session, Stage.DRAFT)

        changes = {k: fields[k] for k in CLIENT_FIELDS if k in fields}
        for key, value in changes.items():
            if value is not None and not isinstance(value, str):
                raise ValidationFailed(f"{key} must be a string")
        if 'client_name' in changes and not (changes['client_name'] or '').strip():
            raise ValidationFailed('Client name is required')
        email = (changes.get('client_email') or '').strip()
        if email and not EMAIL_RE.match(email):
            raise ValidationFailed('Please enter a valid email address')
        phone = (changes.get('client_phone') or '').strip()
        if phone and not PHONE_RE.match(PHONE_STRIP_RE.sub('', phone)):
            raise ValidationFailed('Please enter a valid phone number')

        for key, value in changes.items():
            setattr(session, key, value.strip() if isinstance(value, str) and value.strip() else None)
        session.touch()
        self._commit()
        return session

    def delete_session(self, session_id: str) -> None:
        session = self.get_session(session_id)
        # dependents first, the datastore does not cascade
        Estimate.query.filter_by(session_id=session.id).delete()
        Mockup.query.filter_by(session_id=session.id).delete()
        db.session.delete(session)
        self._commit()
        logger.info("deleted session %s", session_id)

    def navigate(self, session_id: str, stage) -> SalesSession:
        session = self.get_session(session_id)
        try:
            target = Stage.coerce(stage)
        except (TypeError, ValueError):
            raise ValidationFailed(f"Unknown stage {stage!r}") from None
        advance(session, target, self.get_estimate(session_id))
        session.touch()
        self._commit()
        return session

    # ------------------------------------------------------------------
    # stage 2: photo
    # ------------------------------------------------------------------
    def upload_photo(self, session_id: str, data: bytes, content_type: str) -> SalesSession:
        session = self.get_session(session_id)
        self._gate(session, Stage.PHOTO_UPLOADED)
        self._check_upload(data, content_type, lambda ct: ct.startswith('image/'))

        key = f"session-{session.id}-{_stamp()}{_extension(content_type, '.jpg')}"
        url = self.blobs.put(PHOTOS_BUCKET, key, data, content_type)
        session.original_image_url = url
        promote(session, Stage.PHOTO_UPLOADED)
        session.touch()
        self._commit(url)
        return session

    def remove_photo(self, session_id: str) -> SalesSession:
        """Drop the photo and every mockup derived from it."""
        session = self.get_session(session_id)
        self._gate(session, Stage.PHOTO_UPLOADED)

        self._discard_blob(session.original_image_url)
        mockups = Mockup.query.filter_by(session_id=session.id).all()
        for m in mockups:
            self._discard_blob(m.image_url)
        Mockup.query.filter_by(session_id=session.id).delete()
        session.original_image_url = None
        session.final_mockup_url = None
        session.touch()
        self._commit()
        logger.info("removed photo and %d mockups from session %s", len(mockups), session.id)
        return session

    # ------------------------------------------------------------------
    # stage 3: mockups
    # ------------------------------------------------------------------
    def generate_mockup(self, session_id: str, prompt: Optional[str] = None,
                        custom_instructions: Optional[str] = None) -> Mockup:
        session = self.get_session(session_id)
        self._gate(session, Stage.MOCKUP_CREATED)
        if not session.original_image_url:
            raise ValidationFailed('Upload a property photo before generating a mockup')

        prompt_text = build_mockup_prompt(session, prompt, custom_instructions)
        image = self.images.generate(prompt_text)
        key = f"mockup-{session.id}-{_stamp()}{_extension(image.content_type, '.png')}"
        url = self.blobs.put(PHOTOS_BUCKET, key, image.data, image.content_type)

        mockup = Mockup(
            session_id=session.id,
            image_url=url,
            prompt=prompt_text,
            ai_provider=image.provider,
            is_final=False,
        )
        db.session.add(mockup)
        session.touch()
        self._commit(url)
        return mockup

    def _clear_final_flags(self, session: SalesSession) -> None:
        Mockup.query.filter_by(session_id=session.id).update({'is_final': False})

    def _set_final_flag(self, mockup: Mockup) -> None:
        mockup.is_final = True

    def _point_session_at(self, session: SalesSession, mockup: Mockup) -> None:
        session.final_mockup_url = mockup.image_url
        promote(session, Stage.MOCKUP_CREATED)
        session.touch()

    def _step(self, name: str, fn, *args) -> None:
        try:
            fn(*args)
            db.session.commit()
        except SQLAlchemyError as e:
            db.session.rollback()
            logger.error("mark-final step %s failed: %s", name, e)
            raise PartialInconsistency(name, str(e)) from e

    def mark_mockup_final(self, session_id: str, mockup_id: str) -> Mockup:
        """Make ``mockup_id`` the session's only final mockup.

        Runs as three committed steps; re-running the whole call after a
        failure converges on the same state.
        """
        session = self.get_session(session_id)
        self._gate(session, Stage.MOCKUP_CREATED)
        mockup = db.session.get(Mockup, mockup_id)
        if mockup is None or mockup.session_id != session.id:
            raise NotFound(f"Mockup {mockup_id} not found")

        self._step('clear_final_flags', self._clear_final_flags, session)
        self._step('set_final_flag', self._set_final_flag, mockup)
        self._step('update_session', self._point_session_at, session, mockup)
        return mockup

    # ------------------------------------------------------------------
    # stage 4: estimate
    # ------------------------------------------------------------------
    def fetch_pricing(self, category: Optional[str] = None):
        return self.catalog.resolve(category)

    @staticmethod
    def _validate_items(items) -> list:
        if not isinstance(items, list) or not items:
            raise ValidationFailed('An estimate needs at least one line item')
        clean = []
        for n, raw in enumerate(items, start=1):
            if not isinstance(raw, dict):
                raise ValidationFailed(f"Line {n} is not an object")
            try:
                item = LineItem.from_dict(raw)
                qty = Decimal(str(raw.get('quantity', raw.get('qty'))))
            except (TypeError, ValueError, InvalidOperation):
                raise ValidationFailed(f"Line {n} has a malformed quantity or price") from None
            if not item.name.strip():
                raise ValidationFailed(f"Line {n} needs a name")
            if qty != item.quantity or item.quantity <= 0:
                raise ValidationFailed(f"Line {n} quantity must be a positive whole number")
            prices = (item.selected_price, item.low_price, item.high_price)
            if not all(p.is_finite() for p in prices):
                raise ValidationFailed(f"Line {n} prices must be finite numbers")
            if min(prices) < 0:
                raise ValidationFailed(f"Line {n} prices cannot be negative")
            clean.append(item)
        return clean

    @staticmethod
    def _percent(value, name, upper=None) -> Decimal:
        try:
            pct = Decimal(str(value if value not in (None, '') else 0))
        except InvalidOperation:
            raise ValidationFailed(f"{name} must be a number") from None
        if not pct.is_finite() or pct < 0 or (upper is not None and pct > upper):
            bound = f" between 0 and {upper}" if upper is not None else " at least 0"
            raise ValidationFailed(f"{name} must be{bound}")
        return pct

    def save_estimate(self, session_id: str, items, discount_percent=0, tax_percent=0) -> Estimate:
        session = self.get_session(session_id)
        estimate = self._gate(session, Stage.ESTIMATE_GENERATED)
        line_items = self._validate_items(items)
        discount = self._percent(discount_percent, 'Discount', upper=100)
        tax = self._percent(tax_percent, 'Tax')
        if estimate is not None and estimate.signed_at:
            raise ValidationFailed('The estimate has a signed contract and can no longer change')

        totals = compute_totals(line_items, discount, tax).rounded()
        if estimate is None:
            estimate = Estimate(session_id=session.id)
            db.session.add(estimate)
        estimate.items = [i.to_dict() for i in line_items]
        estimate.discount_percent = discount
        estimate.tax_percent = tax
        estimate.subtotal = totals.subtotal
        estimate.discount_amount = totals.discount_amount
        estimate.tax_amount = totals.tax_amount
        estimate.low_estimate = totals.low_estimate
        estimate.high_estimate = totals.high_estimate
        estimate.final_amount = totals.total

        session.status = Stage.ESTIMATE_GENERATED.status
        session.touch()
        self._commit()
        logger.info("saved estimate %s for session %s total=%s", estimate.id, session.id, totals.total)
        return estimate

    # ------------------------------------------------------------------
    # stage 5: contract
    # ------------------------------------------------------------------
    def _unsigned_estimate(self, session: SalesSession) -> Estimate:
        estimate = self._gate(session, Stage.CONTRACT_SIGNED)
        if estimate is None:
            raise NotFound(f"No estimate for session {session.id}")
        if estimate.signed_at:
            raise ValidationFailed('The contract for this session is already signed')
        return estimate

    def _record_signature(self, session, estimate, url, method, signature_data=None) -> None:
        estimate.contract_pdf_url = url
        estimate.signature_method = method
        estimate.signature_data = signature_data
        estimate.signed_at = utcnow()
        session.status = Stage.CONTRACT_SIGNED.status
        session.touch()
        self._commit(url)
        notifications.dispatch(
            [notifications.CONTRACT_SIGNED, notifications.TEAM_NOTIFICATION],
            session.id,
            mailer=self.mailer,
        )

    def generate_contract(self, session_id: str, signature_data: Optional[str] = None) -> Estimate:
        """Render the contract; with a signature it is also signed."""
        session = self.get_session(session_id)
        estimate = self._unsigned_estimate(session)
        if signature_data:
            if not isinstance(signature_data, str) or not signature_data.startswith('data:image/'):
                raise ValidationFailed('Signature must be an image data URL')
            try:
                decode_signature(signature_data)
            except (binascii.Error, ValueError):
                raise ValidationFailed('Signature image data is not valid base64') from None

        pdf = render_contract(
            session,
            estimate,
            current_app.config['COMPANY_NAME'],
            signature_data=signature_data,
        )
        url = self.blobs.put(
            CONTRACTS_BUCKET, f"contract-{session.id}-{_stamp()}.pdf", pdf, 'application/pdf'
        )
        if signature_data:
            self._record_signature(session, estimate, url, 'in_app', signature_data)
        else:
            estimate.contract_pdf_url = url
            session.touch()
            self._commit(url)
        return estimate

    def upload_signed_contract(self, session_id: str, data: bytes, content_type: str) -> Estimate:
        session = self.get_session(session_id)
        estimate = self._unsigned_estimate(session)
        self._check_upload(data, content_type, lambda ct: ct == 'application/pdf')

        url = self.blobs.put(
            CONTRACTS_BUCKET, f"signed-contract-{session.id}-{_stamp()}.pdf", data, 'application/pdf'
        )
        self._record_signature(session, estimate, url, 'uploaded')
        return estimate

    # ------------------------------------------------------------------
    # stage 6: completion
    # ------------------------------------------------------------------
    def complete_session(self, session_id: str) -> SalesSession:
        session = self.get_session(session_id)
        if Stage.from_status(session.status) == Stage.COMPLETED:
            return session
        self._gate(session, Stage.COMPLETED)
        session.status = Stage.COMPLETED.status
        session.touch()
        self._commit()
        notifications.dispatch(notifications.PROJECT_COMPLETE, session.id, mailer=self.mailer)
        return session

    def send_notification(self, kind: str, session_id: str, recipient_email: Optional[str] = None) -> str:
        self.get_session(session_id)
        return notifications.send_notification(
            kind, session_id, recipient_email=recipient_email, mailer=self.mailer
        )
