import os
import tempfile

# Settings are read at import time; pin a dev environment before any app module loads.
os.environ["ENV"] = "dev"
os.environ["DEBUG"] = "1"
os.environ["JWT_SECRET"] = "test-jwt-secret"
os.environ["DATA_DIR"] = tempfile.mkdtemp(prefix="formbridge-test-")
for _name in (
    "DATABASE_URL",
    "OPENAI_API_KEY",
    "STRIPE_SECRET_KEY",
    "STRIPE_WEBHOOK_SECRET",
    "ADMIN_SECRET",
    "RESEND_API_KEY",
    "SMTP_HOST",
    "SMTP_USER",
    "SMTP_USERNAME",
    "SMTP_PASS",
    "SMTP_PASSWORD",
    "SMTP_FROM",
    "EMAIL_FROM",
    "FONT_PATH",
):
    os.environ.pop(_name, None)
