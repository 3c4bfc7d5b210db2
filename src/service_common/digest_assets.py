from jinja2 import TemplateRuntimeError


class DigestAssetHelper:
    """Template global appending a cache-busting query to asset paths.

    ``{{ digest_asset('app.js') }}`` renders as ``<prefix>app.js?v=<cache_key>``.
    The key is fixed when the renderer is built, so every asset URL changes
    on redeploy and stays stable in between.
    """

    name = "digest_asset"

    def __init__(self, cache_key: int, prefix: str = "") -> None:
        self.cache_key = cache_key
        self.prefix = prefix

    def __call__(self, *params: object) -> str:
        if not params:
            raise TemplateRuntimeError(f"{self.name}: missing asset path (param 0)")

        # str() on a StrictUndefined raises, so unknown variables fail here
        path = str(params[0])
        return f"{self.prefix}{path}?v={self.cache_key}"
