from rest_framework.negotiation import BaseContentNegotiation
from rest_framework.renderers import BaseRenderer


class PlainTextRenderer(BaseRenderer):
    """Render stored values verbatim as UTF-8 text."""

    media_type = "text/plain"
    format = "txt"
    charset = "utf-8"

    def render(self, data, accepted_media_type=None, renderer_context=None):
        if data is None:
            return b""
        if isinstance(data, dict):
            # Error payloads from DRF's exception handler
            data = data.get("detail", "")
        return str(data).encode(self.charset)


class IgnoreClientContentNegotiation(BaseContentNegotiation):
    """Always answer with the first renderer, whatever the Accept header says."""

    def select_parser(self, request, parsers):
        return parsers[0] if parsers else None

    def select_renderer(self, request, renderers, format_suffix=None):
        return (renderers[0], renderers[0].media_type)
