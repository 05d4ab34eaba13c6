"""Messaging and conversation-lifecycle executors.

A run owns a set of conversations keyed by id. The ``default``
conversation is the one agents read from and append to; the caller may
supply its message list so that it persists across turns.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, List, Optional

from .. import settings
from ..engine.context import DEFAULT_CONVERSATION_ID, NodeContext, NodeOutcome
from ..engine.errors import EvaluationError
from ..engine.models import ExecutionEventType, ExecutorType
from .registry import (
    CATEGORY_CONVERSATION,
    CATEGORY_MESSAGES,
    BaseExecutor,
    register_executor_type,
)

logger = logging.getLogger(__name__)

MESSAGE_ROLES = ("user", "assistant", "system", "tool")


def _conversation_id(ctx: NodeContext, value: Any) -> str:
    if value is None or value == "":
        return ctx.run.active_conversation_id
    resolved = ctx.resolve(value)
    if resolved not in ctx.run.conversations:
        raise EvaluationError(f"Unknown conversation: '{resolved}'")
    return resolved


@dataclass
class SendActivityConfig:
    message: str
    message_type: str = "message"


@register_executor_type(
    ExecutorType.SEND_ACTIVITY,
    display_name="Send Activity",
    description="Sends a rendered message to the user",
    category=CATEGORY_MESSAGES,
    config_schema={
        "properties": {
            "message": {"type": "string", "description": "Message template"},
            "messageType": {"type": "string", "default": "message"},
        },
        "required": ["message"],
    },
    output_schema={"type": "string"},
    icon="send",
    color="#2196F3",
)
class SendActivityExecutor(BaseExecutor):

    def parse_config(self) -> SendActivityConfig:
        return SendActivityConfig(
            message=str(self.config["message"]),
            message_type=self.config.get("messageType") or "message",
        )

    def templates(self) -> List[str]:
        return [self.options.message]

    async def execute(self, ctx: NodeContext) -> NodeOutcome:
        text = ctx.render(self.options.message)
        ctx.append_message("assistant", text, name=self.name)
        await ctx.emit(
            ExecutionEventType.LOG_MESSAGE,
            message=text,
            data={"activity": text, "messageType": self.options.message_type},
        )
        return NodeOutcome(output=text)


@dataclass
class AddMessageConfig:
    message: str
    role: str
    conversation_id: Optional[str] = None


@register_executor_type(
    ExecutorType.ADD_CONVERSATION_MESSAGE,
    display_name="Add Conversation Message",
    description="Appends a message to a conversation",
    category=CATEGORY_MESSAGES,
    config_schema={
        "properties": {
            "message": {"type": "string"},
            "role": {"type": "string", "enum": list(MESSAGE_ROLES)},
            "conversationId": {"type": "string"},
        },
        "required": ["message"],
    },
    icon="message-square",
    color="#2196F3",
)
class AddConversationMessageExecutor(BaseExecutor):

    def parse_config(self) -> AddMessageConfig:
        role = self.config.get("role") or settings.DEFAULT_MESSAGE_ROLE
        if role not in MESSAGE_ROLES:
            raise ValueError(f"role must be one of {', '.join(MESSAGE_ROLES)}")
        return AddMessageConfig(
            message=str(self.config["message"]),
            role=role,
            conversation_id=self.config.get("conversationId") or None,
        )

    def templates(self) -> List[str]:
        return [self.options.message]

    async def execute(self, ctx: NodeContext) -> NodeOutcome:
        conversation_id = _conversation_id(ctx, self.options.conversation_id)
        text = ctx.render(self.options.message)
        message = ctx.append_message(self.options.role, text, conversation_id=conversation_id)
        return NodeOutcome(output=message.to_dict(), data={"conversationId": conversation_id})


@dataclass
class RetrieveMessagesConfig:
    result_variable: str
    conversation_id: Optional[str] = None
    count: Optional[int] = None


@register_executor_type(
    ExecutorType.RETRIEVE_CONVERSATION_MESSAGES,
    display_name="Retrieve Conversation Messages",
    description="Copies the latest messages of a conversation into a variable",
    category=CATEGORY_MESSAGES,
    config_schema={
        "properties": {
            "conversationId": {"type": "string"},
            "count": {"type": "integer", "minimum": 1},
            "resultVariable": {"type": "string", "default": "messages"},
        },
    },
    output_schema={"type": "array"},
    icon="inbox",
    color="#2196F3",
)
class RetrieveConversationMessagesExecutor(BaseExecutor):

    def parse_config(self) -> RetrieveMessagesConfig:
        count = self.config.get("count")
        if count is not None and int(count) < 1:
            raise ValueError("count must be at least 1")
        return RetrieveMessagesConfig(
            result_variable=self.config.get("resultVariable") or "messages",
            conversation_id=self.config.get("conversationId") or None,
            count=int(count) if count is not None else None,
        )

    async def execute(self, ctx: NodeContext) -> NodeOutcome:
        conversation_id = _conversation_id(ctx, self.options.conversation_id)
        messages = ctx.run.conversation(conversation_id)
        if self.options.count:
            messages = messages[-self.options.count:]
        payload = [m.to_dict() for m in messages]
        ctx.variables.set(self.options.result_variable, payload)
        return NodeOutcome(output=payload)


# ─── Conversation lifecycle ──────────────────────────────────────────


@register_executor_type(
    ExecutorType.CREATE_CONVERSATION,
    display_name="Create Conversation",
    description="Creates an empty conversation and stores its id",
    category=CATEGORY_CONVERSATION,
    config_schema={
        "properties": {
            "resultVariable": {"type": "string", "default": "conversationId"},
            "activate": {"type": "boolean", "description": "Make it the active conversation"},
        },
    },
    output_schema={"type": "string"},
    icon="plus-circle",
    color="#3F51B5",
)
class CreateConversationExecutor(BaseExecutor):

    async def execute(self, ctx: NodeContext) -> NodeOutcome:
        conversation_id = ctx.run.new_conversation()
        ctx.variables.set(self.config.get("resultVariable") or "conversationId", conversation_id)
        if self.config.get("activate"):
            ctx.run.active_conversation_id = conversation_id
        return NodeOutcome(output=conversation_id)


@register_executor_type(
    ExecutorType.DELETE_CONVERSATION,
    display_name="Delete Conversation",
    description="Deletes a conversation created during this run",
    category=CATEGORY_CONVERSATION,
    config_schema={
        "properties": {"conversationId": {"type": "string"}},
        "required": ["conversationId"],
    },
    icon="minus-circle",
    color="#3F51B5",
)
class DeleteConversationExecutor(BaseExecutor):

    async def execute(self, ctx: NodeContext) -> NodeOutcome:
        conversation_id = _conversation_id(ctx, self.config["conversationId"])
        if conversation_id == DEFAULT_CONVERSATION_ID:
            raise EvaluationError("The default conversation cannot be deleted")
        del ctx.run.conversations[conversation_id]
        if ctx.run.active_conversation_id == conversation_id:
            ctx.run.active_conversation_id = DEFAULT_CONVERSATION_ID
        return NodeOutcome(output=conversation_id)


@register_executor_type(
    ExecutorType.COPY_CONVERSATION_MESSAGES,
    display_name="Copy Conversation Messages",
    description="Appends every message of one conversation to another",
    category=CATEGORY_CONVERSATION,
    config_schema={
        "properties": {
            "sourceConversationId": {"type": "string"},
            "targetConversationId": {"type": "string"},
        },
        "required": ["targetConversationId"],
    },
    output_schema={"type": "integer", "description": "Number of copied messages"},
    icon="copy",
    color="#3F51B5",
)
class CopyConversationMessagesExecutor(BaseExecutor):

    async def execute(self, ctx: NodeContext) -> NodeOutcome:
        source = _conversation_id(ctx, self.config.get("sourceConversationId"))
        target = _conversation_id(ctx, self.config["targetConversationId"])
        messages = list(ctx.run.conversation(source))
        ctx.run.conversation(target).extend(messages)
        return NodeOutcome(output=len(messages), data={"source": source, "target": target})
