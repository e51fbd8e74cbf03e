"""Request bodies shared by the routers."""
from typing import List, Optional

from pydantic import BaseModel, Field

from nodectl.models import Hop, NodeType


class HopModel(BaseModel):
    host: str
    username: str
    password: str = ""
    port: int = Field(default=22, ge=1, le=65535)

    def to_hop(self) -> Hop:
        return Hop(host=self.host, username=self.username, password=self.password, port=self.port)


class HopsRequest(BaseModel):
    hops: List[HopModel] = Field(..., min_length=1)

    def to_hops(self) -> List[Hop]:
        return [h.to_hop() for h in self.hops]


class NodeCreate(HopsRequest):
    id: str
    infra_id: str
    name: str
    type: NodeType


class ContainerListRequest(HopsRequest):
    project: Optional[str] = None
    use_sudo: bool = False


class TeardownRequest(HopsRequest):
    stack: str
    repo_url: Optional[str] = None
    workdir: Optional[str] = None


class BackendRequest(HopsRequest):
    name: str
    address: Optional[str] = None
    port: int = 6443
