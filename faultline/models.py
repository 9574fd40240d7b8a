from __future__ import annotations

from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field


class ClientConfig(BaseModel):
    """
    Configuration surface of the client under test.

    The harness supplies these values; it does not own the retry policy
    they drive.

    Attributes:
        socket_timeout_ms: Per-attempt request timeout.
        retry_backoff_ms: Wait between a failed attempt and the next one.
        socket_max_fails: Consecutive timeouts before the connection is torn
            down and re-established. 0 disables teardown.
        api_version_request: Send a version handshake right after connecting.
            The harness turns this off so it cannot disturb timing.
        bootstrap_url: Base URL of the single broker.
        token: Bearer token sent with every request, if any.
    """

    model_config = ConfigDict(extra="forbid")

    socket_timeout_ms: int = Field(default=1000, gt=0)
    retry_backoff_ms: int = Field(default=5000, ge=0)
    socket_max_fails: int = Field(default=3, ge=0)
    api_version_request: bool = True
    bootstrap_url: str = "http://broker.local:9092"
    token: Optional[str] = None


class BrokerInfo(BaseModel):
    node_id: int
    host: str
    port: int


class TopicInfo(BaseModel):
    name: str
    partitions: int = Field(default=1, ge=0)


class Metadata(BaseModel):
    """Cluster metadata returned by a successful metadata request."""

    brokers: List[BrokerInfo] = Field(default_factory=list)
    topics: List[TopicInfo] = Field(default_factory=list)

    def topic(self, name: str) -> Optional[TopicInfo]:
        for info in self.topics:
            if info.name == name:
                return info
        return None
