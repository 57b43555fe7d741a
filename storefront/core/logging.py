import logging

FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(level=level.upper(), format=FORMAT)
    # uvicorn ya trae sus propios handlers
    logging.getLogger("storefront").setLevel(level.upper())
