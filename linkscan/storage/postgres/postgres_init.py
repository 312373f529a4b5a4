from loguru import logger
from tortoise import Tortoise

from linkscan.utils.db_utils import mask_dsn, to_tortoise_url


MODEL_MODULES = ["linkscan.storage.models"]


async def init_db(database_url: str, *, generate_schemas: bool = True) -> None:
    """
    Connect the ORM and create/verify the tables.
    """
    db_url = to_tortoise_url(database_url)
    logger.info(f"Initializing database {mask_dsn(db_url)} ...")

    await Tortoise.init(
        db_url=db_url,
        modules={"models": MODEL_MODULES},
        use_tz=True,
        timezone="UTC",
    )

    if generate_schemas:
        await Tortoise.generate_schemas(safe=True)
        logger.info("Database tables created or verified.")


async def close_db() -> None:
    await Tortoise.close_connections()
