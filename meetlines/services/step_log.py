"""Step logging for the payment functions.

Produces lines like ``[VERIFY-TICKET-PAYMENT] Sale loaded - {"saleId": "..."}``
so one invocation can be followed through the logs.
"""

import json
import logging

logger = logging.getLogger("meetlines.payments")


class StepLogger:
    def __init__(self, tag: str):
        self.tag = tag

    def __call__(self, step: str, details: dict = None):
        suffix = f" - {json.dumps(details, default=str)}" if details else ""
        logger.info("[%s] %s%s", self.tag, step, suffix)
