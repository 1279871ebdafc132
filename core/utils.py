import functools
import logging

from core.errors import (
    ApiError,
    AuthCancelledError,
    AuthError,
    LarkSyncError,
    NetworkError,
    ValidationError,
)

logger = logging.getLogger(__name__)


def validate_non_empty(value: str | None, param_name: str) -> str:
    """Validate a required string parameter."""
    if value is None:
        raise ValidationError(f"{param_name} is required")

    value = value.strip()
    if not value:
        raise ValidationError(f"{param_name} cannot be empty")

    return value


class ToolError(LarkSyncError):
    """User-facing failure raised from an MCP tool."""

    pass


def handle_lark_errors(tool_name: str):
    """
    A decorator to handle Lark errors at the MCP tool boundary in a standardized way.

    It wraps a tool function, logs a detailed error message, and raises a
    ToolError with a user-friendly message. A cancelled authorization is not
    an error: its message is returned as the tool result.

    Args:
        tool_name (str): The name of the tool being decorated (e.g., 'create_lark_doc').
    """

    def decorator(func):
        @functools.wraps(func)
        async def wrapper(*args, **kwargs):
            try:
                return await func(*args, **kwargs)
            except AuthCancelledError as e:
                logger.info(f"[{tool_name}] {e}")
                return str(e)
            except ValidationError as e:
                message = f"Input error in {tool_name}: {e}"
                logger.warning(message)
                raise ToolError(message) from e
            except AuthError as e:
                message = f"Authentication error in {tool_name}: {e}"
                logger.error(message)
                raise ToolError(message) from e
            except ApiError as e:
                if e.http_status in (401, 403):
                    message = (
                        f"API error in {tool_name}: {e}. "
                        f"You might need to re-authenticate. "
                        f"LLM: Try 'start_lark_auth'."
                    )
                else:
                    message = f"API error in {tool_name}: {e}"
                logger.error(f"API error in {tool_name}: {e}", exc_info=True)
                raise ToolError(message) from e
            except NetworkError as e:
                message = (
                    f"A network error occurred in '{tool_name}': {e}. "
                    "This is likely a temporary issue. Please try again shortly."
                )
                logger.error(message)
                raise ToolError(message) from e
            except ToolError:
                raise
            except Exception as e:
                message = f"An unexpected error occurred in {tool_name}: {e}"
                logger.exception(message)
                raise ToolError(message) from e

        return wrapper

    return decorator
