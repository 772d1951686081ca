from pydantic import BaseModel


class EnvConfig(BaseModel):
    """
    Represents a single configuration parameter a client reads from the environment.

    Attributes:
        env_key (str): The raw key, prefixed with client type and engine at lookup. E.g. "BASE_URL".
        val_type (str): "string" or "number".
        default (str | int | float | None): Fallback when unset. None marks the key as required.
    """
    env_key: str
    val_type: str
    default: str | int | float | None = None
