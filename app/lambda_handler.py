# lambda_handler.py - Standalone Lambda handler
import os

# Force Lambda environment detection before the engine is built
os.environ.setdefault("AWS_LAMBDA_FUNCTION_NAME", "bloodstock-ledger")

from mangum import Mangum  # noqa: E402

from app.main import app  # noqa: E402

# Tables are managed by alembic in serverless deployments
handler = Mangum(app, lifespan="off")


def lambda_handler(event, context):
    """
    AWS Lambda entry point
    Args:
        event: AWS Lambda event object
        context: AWS Lambda context object
    Returns:
        Response from FastAPI app via Mangum
    """
    return handler(event, context)
