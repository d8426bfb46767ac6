from drf_spectacular.types import OpenApiTypes
from drf_spectacular.utils import OpenApiParameter, OpenApiResponse, extend_schema
from rest_framework import status
from rest_framework.exceptions import ParseError
from rest_framework.response import Response
from rest_framework.views import APIView

from storage.authentication import bearer_token_from_request
from storage.exceptions import InvalidBody, NoContent, Unauthorized
from storage.renderers import IgnoreClientContentNegotiation, PlainTextRenderer
from storage.services import read_value, write_value
from storage.store import get_store

KEY_PARAMETER = OpenApiParameter(
    name="key",
    type=str,
    location=OpenApiParameter.PATH,
    description="The key to read or write",
)


def _authorization_parameter(token_kind: str) -> OpenApiParameter:
    return OpenApiParameter(
        name="Authorization",
        type=str,
        location=OpenApiParameter.HEADER,
        required=True,
        description=f"Bearer token for {token_kind}: `Bearer <token>`",
    )


class KeyValueView(APIView):
    """Read and write a single key."""

    authentication_classes = []
    permission_classes = []
    renderer_classes = [PlainTextRenderer]
    content_negotiation_class = IgnoreClientContentNegotiation

    def _auth_token(self, request):
        return bearer_token_from_request(request)

    @extend_schema(
        operation_id="read_key",
        summary="Read the value stored under a key",
        description="Return the stored value verbatim. When last-modified tracking is enabled the response carries a Last-Modified header.",
        parameters=[KEY_PARAMETER, _authorization_parameter("reads")],
        responses={
            200: OpenApiResponse(
                response=OpenApiTypes.STR,
                description="The stored value",
            ),
            204: OpenApiResponse(description="Key has no value"),
            401: OpenApiResponse(description="Missing or wrong read token"),
        },
        tags=["Key-Value Operations"],
    )
    def get(self, request, key: str):
        try:
            result = read_value(get_store(), key, self._auth_token(request))
        except Unauthorized:
            return Response(status=status.HTTP_401_UNAUTHORIZED)
        except NoContent:
            return Response(status=status.HTTP_204_NO_CONTENT)

        headers = {}
        if result.last_modified is not None:
            headers["Last-Modified"] = result.last_modified
        return Response(result.value, status=status.HTTP_200_OK, headers=headers)

    @extend_schema(
        operation_id="write_key",
        summary="Store a value under a key",
        description="Store the raw request body as the value for the key, replacing any previous value. An empty body stores an empty value.",
        parameters=[KEY_PARAMETER, _authorization_parameter("writes")],
        request={"text/plain": OpenApiTypes.STR},
        responses={
            200: OpenApiResponse(description="Value stored"),
            400: OpenApiResponse(description="Body is not valid UTF-8"),
            401: OpenApiResponse(description="Missing or wrong write token"),
        },
        tags=["Key-Value Operations"],
    )
    def post(self, request, key: str):
        try:
            write_value(get_store(), key, self._auth_token(request), lambda: request.body)
        except Unauthorized:
            return Response(status=status.HTTP_401_UNAUTHORIZED)
        except InvalidBody as exc:
            raise ParseError("Request body must be valid UTF-8") from exc

        return Response(status=status.HTTP_200_OK)
