"""
Directory-backed HTML rendering for services using `service_common`.

`Renderer` compiles every template under a directory when it is built,
keeps one context shared by all renders and exposes the `digest_asset`
helper for cache-busted asset URLs. Templates run in strict mode: any
reference to an undefined variable fails the render instead of producing
blank output.

The shared context is visible to every render from every thread. Values that
belong to a single request should be passed through the ``context`` argument
of `Renderer.render`, which never touches the shared state.
"""

import logging
import time
from contextlib import contextmanager
from pathlib import Path
from threading import Lock
from typing import Any, Iterator, Mapping, Optional

import jinja2
from pydantic_core import PydanticSerializationError, to_jsonable_python

from service_common.digest_assets import DigestAssetHelper
from service_common.errors import (
    ContextUpdateError,
    RenderError,
    RendererError,
    TemplateError,
)
from service_common.template_config import RendererConfig

_LOGGER = logging.getLogger(__name__)


class Renderer:
    """Render named templates from a directory against a shared context.

    :param directory: Root directory scanned recursively for templates.
    :type directory: str | Path
    :param extension: Suffix identifying template files; it is not part of
        the template name (``pages/about`` is ``pages/about.html``).
    :type extension: str
    :param dev_mode: Reload templates from disk when they change.
    :type dev_mode: bool
    :param asset_prefix: Prepended to every path passed to ``digest_asset``.
    :type asset_prefix: str
    :param lock_timeout: Seconds to wait for the context lock.
    :type lock_timeout: float
    :param cache_key: Cache-busting value; defaults to the current time in
        whole seconds since the epoch.
    :type cache_key: int | None
    :raises TemplateError: If the directory is missing or a template does
        not compile.
    """

    def __init__(
        self,
        directory: "str | Path",
        *,
        extension: str = ".html",
        dev_mode: bool = False,
        asset_prefix: str = "",
        lock_timeout: float = 5.0,
        cache_key: Optional[int] = None,
    ) -> None:
        self.directory = Path(directory)
        self.extension = extension
        self.dev_mode = dev_mode
        self._lock_timeout = lock_timeout
        self._cache_key = int(time.time()) if cache_key is None else cache_key

        if not self.directory.is_dir():
            raise TemplateError(f"Template directory not found: {self.directory}")

        self._env = jinja2.Environment(
            loader=jinja2.FileSystemLoader(self.directory),
            undefined=jinja2.StrictUndefined,
            autoescape=True,
            auto_reload=dev_mode,
        )
        helper = DigestAssetHelper(self._cache_key, prefix=asset_prefix)
        self._env.globals[helper.name] = helper

        self._templates = self._compile_all()

        self._lock = Lock()
        self._context: dict[str, Any] = {}

        _LOGGER.info(
            "📄 Loaded %d templates from %s (cache key %s).",
            len(self._templates),
            self.directory,
            self._cache_key,
        )

    @classmethod
    def from_config(cls, config: RendererConfig) -> "Renderer":
        """Create a renderer from a `RendererConfig`.

        :param config: Renderer settings.
        :type config: RendererConfig
        :return: A renderer built from ``config``.
        :rtype: Renderer
        """
        return cls(
            config.directory,
            extension=config.extension,
            dev_mode=config.dev_mode,
            asset_prefix=config.asset_prefix,
            lock_timeout=config.lock_timeout,
        )

    @property
    def cache_key(self) -> int:
        return self._cache_key

    @property
    def template_names(self) -> list[str]:
        return sorted(self._templates)

    def _compile_all(self) -> dict[str, jinja2.Template]:
        """Compile every template file under the directory.

        :return: Compiled templates keyed by name without the extension.
        :rtype: dict[str, jinja2.Template]
        :raises TemplateError: On the first template that fails to compile.
        """
        templates: dict[str, jinja2.Template] = {}
        filenames = self._env.list_templates(
            filter_func=lambda filename: filename.endswith(self.extension)
        )
        for filename in filenames:
            name = filename[: -len(self.extension)]
            try:
                templates[name] = self._env.get_template(filename)
            except jinja2.TemplateSyntaxError as exc:
                raise TemplateError(
                    f"Failed to compile template {filename!r} (line {exc.lineno}): {exc.message}"
                ) from exc
            except UnicodeDecodeError as exc:
                raise TemplateError(
                    f"Template {filename!r} is not valid UTF-8"
                ) from exc
        return templates

    @contextmanager
    def _locked(
        self, error_cls: type[RendererError] = ContextUpdateError
    ) -> Iterator[dict[str, Any]]:
        if not self._lock.acquire(timeout=self._lock_timeout):
            raise error_cls("Timed out waiting for the render context lock.")
        try:
            yield self._context
        finally:
            self._lock.release()

    def insert(self, key: str, value: Any) -> None:
        """Store ``value`` in the shared context under ``key``.

        The value is converted to JSON-compatible data first, replacing any
        previous value for ``key``.

        :param key: Context variable name.
        :type key: str
        :param value: Any value pydantic can serialise to JSON.
        :type value: Any
        :raises ContextUpdateError: If ``value`` cannot be serialised or the
            lock cannot be acquired.
        """
        try:
            data = to_jsonable_python(value)
        except (PydanticSerializationError, ValueError, TypeError) as exc:
            raise ContextUpdateError(
                f"Value for {key!r} is not JSON serialisable: {exc}"
            ) from exc

        with self._locked() as context:
            context[key] = data

    def remove(self, key: str) -> None:
        """Drop ``key`` from the shared context; missing keys are ignored."""
        with self._locked() as context:
            context.pop(key, None)

    def clear(self) -> None:
        with self._locked() as context:
            context.clear()

    def snapshot(self) -> dict[str, Any]:
        """Return a copy of the shared context.

        :raises RenderError: If the lock cannot be acquired.
        """
        with self._locked(RenderError) as context:
            return dict(context)

    def _lookup(self, template_name: str) -> jinja2.Template:
        if not self.dev_mode:
            try:
                return self._templates[template_name]
            except KeyError:
                raise TemplateError(f"Template not found: {template_name!r}") from None

        # Going through the environment re-checks the file on disk
        filename = f"{template_name}{self.extension}"
        try:
            return self._env.get_template(filename)
        except jinja2.TemplateNotFound:
            raise TemplateError(f"Template not found: {template_name!r}") from None
        except jinja2.TemplateSyntaxError as exc:
            raise TemplateError(
                f"Failed to compile template {filename!r} (line {exc.lineno}): {exc.message}"
            ) from exc
        except UnicodeDecodeError as exc:
            raise TemplateError(f"Template {filename!r} is not valid UTF-8") from exc

    def render(
        self, template_name: str, context: Optional[Mapping[str, Any]] = None
    ) -> str:
        """Render ``template_name`` against the shared context.

        :param template_name: Template name without the extension.
        :type template_name: str
        :param context: Extra values for this render only; they take
            precedence over the shared context and are not stored.
        :type context: Mapping[str, Any] | None
        :return: The rendered output.
        :rtype: str
        :raises TemplateError: If no template has that name.
        :raises RenderError: If rendering fails, e.g. an undefined variable
            or a failing helper.
        """
        template = self._lookup(template_name)

        values = self.snapshot()
        if context:
            values.update(context)

        try:
            return template.render(values)
        except jinja2.TemplateError as exc:
            _LOGGER.debug("Rendering %r failed: %s", template_name, exc)
            raise RenderError(
                f"Failed to render template {template_name!r}: {exc}"
            ) from exc
        except Exception as exc:
            # Expressions, filters and helpers can raise anything
            _LOGGER.debug("Rendering %r raised %r", template_name, exc)
            raise RenderError(
                f"Failed to render template {template_name!r}: {exc!r}"
            ) from exc
