from pydantic import BaseModel

class Msg(BaseModel):
    message: str

class DeletedOut(Msg):
    id: str
