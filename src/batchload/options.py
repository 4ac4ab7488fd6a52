from pydantic import BaseModel, ConfigDict


class LoaderOptions(BaseModel):
    """
    Per-loader configuration.

    Attributes
    ----------
    cache : bool
        Keep successful results for the lifetime of the owning context, so a key
        loaded again after its batch was dispatched resolves without a new fetch.
        Off by default: only requests within one pending batch are merged.
    name : str | None
        Label used in log events. Defaults to the fetch function's qualified name.
    """

    model_config = ConfigDict(frozen=True)

    cache: bool = False
    name: str | None = None
