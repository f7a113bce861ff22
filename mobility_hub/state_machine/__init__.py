"""
State Machine Module for Conversation Flows
"""
from mobility_hub.state_machine.states import ConversationState, EXTERNAL_PENDING_STATES
from mobility_hub.state_machine.dispatcher import StateDispatcher, dispatcher

__all__ = ["ConversationState", "EXTERNAL_PENDING_STATES", "StateDispatcher", "dispatcher"]
