from krakenbot.agent.contracts import Command, CommandEnvelope, CommandName
from krakenbot.agent.decision_client import (
    ChatCompletionsDecisionClient,
    DecisionClient,
    DecisionServiceError,
)
from krakenbot.agent.prompt import DecisionPrompt, PromptBuilder
from krakenbot.agent.validator import (
    CommandGrammarError,
    CommandParseError,
    CommandValidator,
    InvalidCommandError,
    UnknownCommandError,
)

__all__ = [
    "ChatCompletionsDecisionClient",
    "Command",
    "CommandEnvelope",
    "CommandGrammarError",
    "CommandName",
    "CommandParseError",
    "CommandValidator",
    "DecisionClient",
    "DecisionPrompt",
    "DecisionServiceError",
    "InvalidCommandError",
    "PromptBuilder",
    "UnknownCommandError",
]
