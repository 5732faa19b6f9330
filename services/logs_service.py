import logging

from config import DEBUG

# Config logging
logger = logging.getLogger("maapaap_api")
logger.setLevel(logging.DEBUG if DEBUG else logging.INFO)

if not logger.handlers:
    handler = logging.StreamHandler()
    formatter = logging.Formatter("%(asctime)s - %(levelname)s - %(name)s - %(message)s")

    handler.setFormatter(formatter)
    logger.addHandler(handler)
