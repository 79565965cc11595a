"""Wire-level constants shared by the Salaam protocol components."""

# Well-known UDP port on which announcements are broadcast.
SALAAM_PORT = 54183

# Every datagram starts with this prefix, followed by a base64 payload.
MESSAGE_PREFIX = "Salaam:"

# Separates the fields of the inner (base64-decoded) message.
FIELD_SEPARATOR = ";"

# Control code sent by a publisher when its service goes away.
END_OF_SERVICE = "EOS"

# Wildcard service type, matching every announced type.
ANY_SERVICE_TYPE = "*"
