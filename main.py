#entry point for the scheduled weather sweep (cron / serverless scheduler)
import json
import logging

from flightguard.bootstrap import build_services
from flightguard.logging_config import setup_logging
from flightguard.timezone_utils import now

logger = logging.getLogger(__name__)


def handler(event=None, context=None):
    """
    Run the 48 hour weather sweep once.
    Returns:
        dict: statusCode plus a JSON body with the sweep summary
    """
    setup_logging()
    logger.info("Weather check job started")
    try:
        services = build_services(with_workflow=False)
        summary = services.weather_check.run_scheduled_sweep()
    except Exception as e:
        logger.exception(f"Weather check job failed: {e}")
        return {
            "statusCode": 500,
            "body": json.dumps({"success": False, "error": str(e), "timestamp": now().isoformat()}),
        }

    return {
        "statusCode": 200,
        "body": json.dumps({"success": True, "summary": summary.as_dict(), "timestamp": now().isoformat()}),
    }


if __name__ == "__main__":
    result = handler()
    print(result["body"])
