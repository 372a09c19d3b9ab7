"""
Application shutdown handlers
"""
import asyncio
import logging
from constituency.db.database import engine
from constituency.services.geocoding import _running_tasks

logger = logging.getLogger(__name__)


async def cancel_background_tasks() -> int:
    """Cancel running geocoding tasks; their jobs are paused on the next startup"""
    tasks_to_wait = [task for task in list(_running_tasks) if not task.done()]
    for task in tasks_to_wait:
        task.cancel()

    if tasks_to_wait:
        logger.info(f"Waiting for {len(tasks_to_wait)} tasks to cancel...")
        try:
            done, pending = await asyncio.wait(tasks_to_wait, timeout=3.0)
            if pending:
                logger.debug(f"{len(pending)} tasks still pending after timeout, continuing shutdown")
        except asyncio.CancelledError:
            logger.debug("Task wait cancelled during shutdown")

    return len(tasks_to_wait)


async def close_database_connections():
    """Close database connections gracefully"""
    try:
        logger.info("Closing database connections...")
        await engine.dispose()
        logger.info("Database connections closed")
    except Exception as e:
        logger.warning(f"Error closing database connections: {e}")
    except asyncio.CancelledError:
        logger.debug("Database connection close cancelled")


async def setup_shutdown_handlers():
    """Set up all shutdown handlers"""
    logger.info("Application shutting down, initiating graceful shutdown...")

    cancelled_count = await cancel_background_tasks()
    await close_database_connections()

    logger.info(f"Shutdown complete. Cancelled {cancelled_count} tasks.")
