from typing import Annotated, Any, Literal, Union

from eth_utils import is_address, to_checksum_address
from pydantic import BaseModel, Field, TypeAdapter, field_validator

Direction = Literal["UP", "DOWN", "LEFT", "RIGHT"]


class JoinRoom(BaseModel):
    type: Literal["joinRoom"]
    eoa: str
    room_id: str | None = Field(default=None, alias="roomId")

    @field_validator("eoa")
    @classmethod
    def checksum_eoa(cls, value: str) -> str:
        if not is_address(value):
            raise ValueError("Invalid Ethereum address format")
        return to_checksum_address(value)


class StartGame(BaseModel):
    type: Literal["startGame"]
    room_id: str | None = Field(default=None, alias="roomId")


class Move(BaseModel):
    type: Literal["move", "changeDirection"]
    direction: Direction


class GetAvailableRooms(BaseModel):
    type: Literal["getAvailableRooms"]


class AppSessionSignature(BaseModel):
    type: Literal["appSession:signature"]
    room_id: str = Field(alias="roomId")
    signature: str


ClientMessage = Annotated[
    Union[JoinRoom, StartGame, Move, GetAvailableRooms, AppSessionSignature],
    Field(discriminator="type"),
]

client_message_adapter = TypeAdapter(ClientMessage)


def parse_client_message(raw: str) -> ClientMessage:
    return client_message_adapter.validate_json(raw)


def server_message(msg_type: str, **data: Any) -> dict[str, Any]:
    return {"type": msg_type, **data}
