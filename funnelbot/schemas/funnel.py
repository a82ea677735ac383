from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field

START_NODE_ID = "1"
END_NODE_TYPE = "end"


class FunnelEdge(BaseModel):
    target: str = Field(min_length=1)
    handle: str = Field(min_length=1)


class FunnelNode(BaseModel):
    id: str = Field(min_length=1)
    type: str = Field(min_length=1)
    label: str = ""
    content: str = ""
    outgoing: list[FunnelEdge] = Field(default_factory=list)

    @property
    def is_terminal(self) -> bool:
        return self.type == END_NODE_TYPE


class FunnelGraph(BaseModel):
    tenant_id: str
    bot_id: str
    is_active: bool = False
    version: int = 1
    nodes: list[FunnelNode] = Field(default_factory=list)
    last_modified: Optional[datetime] = None

    def node(self, node_id: str) -> Optional[FunnelNode]:
        for node in self.nodes:
            if node.id == node_id:
                return node
        return None


class FunnelPublishRequest(BaseModel):
    tenant_id: str
    bot_id: str
    nodes: list[FunnelNode]


class FunnelStatus(BaseModel):
    tenant_id: str
    bot_id: str
    is_active: bool
    version: int
