from ._driver import ClientConnection, response_parser, serialize_request
