"""External collaborators, built once per app.

Everything the workflow talks to lives in ``app.extensions['salesflow']`` so
tests can swap any entry for a fake.
"""

from salesflow.integrations.images import ImageGenerator
from salesflow.integrations.mailer import ResendMailer
from salesflow.integrations.sheets import SheetsReader
from salesflow.integrations.storage import BlobStore

EXTENSION_KEY = 'salesflow'


def init_integrations(app):
    cfg = app.config
    app.extensions[EXTENSION_KEY] = {
        'blobs': BlobStore(cfg['STORAGE_DIR'], cfg['PUBLIC_BASE_URL']),
        'images': ImageGenerator(
            cfg['OPENAI_API_KEY'],
            model=cfg['IMAGE_MODEL'],
            size=cfg['IMAGE_SIZE'],
            quality=cfg['IMAGE_QUALITY'],
        ),
        'mailer': ResendMailer(cfg['RESEND_API_KEY'], cfg['EMAIL_FROM'], cfg['RESEND_API_URL']),
        'sheets': SheetsReader(cfg['GOOGLE_SHEETS_API_KEY']),
    }


def collaborator(name):
    from flask import current_app
    return current_app.extensions[EXTENSION_KEY][name]
