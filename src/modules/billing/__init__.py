"""Invoice & payment ledger."""

# The ORM models import the billing constants; load the models first.
import src.models  # noqa: F401
