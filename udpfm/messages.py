from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter

"""
messages.py — the datagram vocabulary.

What this module does:
- Defines the four inbound message shapes as a closed tagged union keyed on
  `type`. Anything else fails validation and is dropped by the dispatcher.
- Provides small builders for every outbound shape so replies are spelled the
  same way everywhere (field names are camelCase on the wire).

`operation` and `newRole` are plain strings on purpose: an unknown operation or
role is a request the client should hear back about, not a malformed packet.
"""

# -----------------------
# Public message type tags
# -----------------------
REGISTER = "register"
FILE_ACCESS = "fileAccess"
PROCESS_INPUT = "process_input"
ROLE_MANAGEMENT = "role_management"

REGISTRATION_SUCCESS = "registration_success"
USER_CONNECTED = "user_connected"
USER_DISCONNECTED = "user_disconnected"
ROLE_UPDATED = "role_updated"
SUCCESS = "success"
ERROR = "error"
EXECUTE_OUTPUT = "execute_output"
EXECUTE_ERROR = "execute_error"
EXECUTE_END = "execute_end"

TIMEOUT_MESSAGE = "Process timed out and was terminated"


class InboundMessage(BaseModel):
    model_config = ConfigDict(extra="ignore")


class RegisterMessage(InboundMessage):
    type: Literal["register"] = REGISTER
    userName: Optional[str] = None


class FileAccessMessage(InboundMessage):
    type: Literal["fileAccess"] = FILE_ACCESS
    operation: str
    filename: Optional[str] = None
    content: Optional[str] = None


class ProcessInputMessage(InboundMessage):
    type: Literal["process_input"] = PROCESS_INPUT
    input: str = ""


class RoleManagementMessage(InboundMessage):
    type: Literal["role_management"] = ROLE_MANAGEMENT
    targetClientId: str
    newRole: str


ClientMessage = Annotated[
    Union[RegisterMessage, FileAccessMessage, ProcessInputMessage, RoleManagementMessage],
    Field(discriminator="type"),
]

_client_message_adapter = TypeAdapter(ClientMessage)


def parse_message(obj: Dict[str, Any]) -> ClientMessage:
    """Validate a decoded datagram. Raises pydantic.ValidationError."""
    return _client_message_adapter.validate_python(obj)


# -----------------------
# Outbound builders
# -----------------------

def registration_success(user_name: str, role: str, is_admin: bool) -> Dict[str, Any]:
    return {
        "type": REGISTRATION_SUCCESS,
        "message": f"Welcome {user_name}!",
        "isAdmin": is_admin,
        "role": role,
    }


def user_connected(user_name: str, client_id: str, role: str) -> Dict[str, Any]:
    return {"type": USER_CONNECTED, "userName": user_name, "clientId": client_id, "role": role}


def user_disconnected(client_id: str) -> Dict[str, Any]:
    return {"type": USER_DISCONNECTED, "clientId": client_id}


def role_updated(new_role: str, message: str, target_client_id: Optional[str] = None) -> Dict[str, Any]:
    msg: Dict[str, Any] = {"type": ROLE_UPDATED, "newRole": new_role, "message": message}
    if target_client_id is not None:
        msg["targetClientId"] = target_client_id
    return msg


def success(
    message: Optional[str] = None,
    files: Optional[List[Dict[str, Any]]] = None,
    content: Optional[str] = None,
    details: Optional[str] = None,
) -> Dict[str, Any]:
    """Generic positive reply; only the fields that were given are sent."""
    msg: Dict[str, Any] = {"type": SUCCESS}
    for key, value in (("message", message), ("files", files), ("content", content), ("details", details)):
        if value is not None:
            msg[key] = value
    return msg


def error(message: str, details: Optional[str] = None, kind: Optional[str] = None) -> Dict[str, Any]:
    msg: Dict[str, Any] = {"type": ERROR, "message": message}
    if details is not None:
        msg["details"] = details
    if kind is not None:
        msg["kind"] = kind
    return msg


def execute_output(output: str) -> Dict[str, Any]:
    return {"type": EXECUTE_OUTPUT, "output": output, "interactive": True}


def execute_error(text: str) -> Dict[str, Any]:
    return {"type": EXECUTE_ERROR, "error": text}


def execute_end(message: str) -> Dict[str, Any]:
    return {"type": EXECUTE_END, "message": message, "shouldPrompt": True}
