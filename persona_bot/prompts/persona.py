from __future__ import annotations

from typing import Any, Iterable, Mapping, Sequence

from ..common import ChatMessage, SPLIT_TOKEN
from .json_loader import load_prompt_json

SHOULD_REPLY_CONTEXT_MESSAGES = 3

_DEFAULTS: dict[str, Any] = {
    "should_reply_template": (
        "You are {persona_name}. Someone said: \"{content}\"\n\n"
        "Recent conversation context:\n{history_lines}\n\n"
        "Based on your personality, do you want to reply to this message?\n"
        "- Reply with ONLY \"YES\" if you want to engage\n"
        "- Reply with ONLY \"NO\" if you want to ignore it\n\n"
        "Consider:\n"
        "- Is this message interesting/relevant to you?\n"
        "- Are you mentioned or is someone talking to you?\n"
        "- Does this fit your vibe and personality?"
    ),
    "system_prompt_template": (
        "{base_prompt}\n\n"
        "Memories:\n{memory_lines}\n\n"
        "Relationships:\n{relationship_lines}\n"
        "{other_conversations}\n"
        "CURRENT CONTEXT:\n"
        "- Location: {location}\n"
        "- Talking to: {display_name} (username: {username})\n\n"
        "{split_instruction}\n\n"
        "Chat History:\n{history_lines}"
    ),
    "split_instruction": (
        "If you want to send more than one chat message, separate the messages with " + SPLIT_TOKEN + "."
    ),
    "other_conversations_template": "\nRecent Context from Other Conversations:\n{lines}\n",
    "gossip_template": (
        "You are {persona_name}. You've been having conversations with different people.\n"
        "Analyze these recent conversations and extract INTERESTING FACTS or GOSSIP that you might "
        "naturally mention to others.\n\n"
        "CONVERSATIONS:\n{conversation_lines}\n\n"
        "EXTRACT:\n"
        "1. Interesting updates about people (e.g., \"Mint mentioned someone was bothering her\")\n"
        "2. Things people told you that others might ask about\n"
        "3. Drama, news, or notable events\n"
        "4. DO NOT extract boring stuff like greetings or small talk\n\n"
        "Return ONLY a JSON object with a list of shareable one-line facts:\n"
        "{{\n  \"gossip\": [\"Mint said someone was bothering her\", \"X is playing valorant today\"]\n}}\n\n"
        "If nothing interesting, return: {{\"gossip\": []}}"
    ),
    "user_memories_template": (
        "You are {persona_name}. Analyze these conversations and extract USER-SPECIFIC information.\n\n"
        "CONVERSATIONS:\n{conversation_lines}\n\n"
        "Extract:\n"
        "1. **User facts**: Personal info about each user (age, preferences, real name, job, location, hobbies)\n"
        "2. **Relationships**: Connections between users or with {persona_name}\n"
        "   - Examples: \"X is friends with Y\", \"X has crush on {persona_name}\", \"X and Y are dating\"\n\n"
        "Every line starts with the speaker name and, in parentheses, their id.\n"
        "Use that id for user_id, user_id_1 and user_id_2. Use \"{persona_name}\" when the link involves you.\n\n"
        "Return ONLY JSON:\n"
        "{{\n"
        "  \"user_facts\": [\n"
        "    {{\"user_id\": \"123456789\", \"key\": \"age\", \"value\": \"18\"}},\n"
        "    {{\"user_id\": \"123456789\", \"key\": \"fav_game\", \"value\": \"valorant\"}}\n"
        "  ],\n"
        "  \"relationships\": [\n"
        "    {{\"user_id_1\": \"123456789\", \"user_id_2\": \"987654321\", \"type\": \"friend\", \"description\": \"close friends\"}}\n"
        "  ]\n"
        "}}\n\n"
        "If nothing interesting found: {{\"user_facts\": [], \"relationships\": []}}"
    ),
    "proactive_template": (
        "You are {persona_name}. It is currently {time_label}.\n"
        "You are thinking about sending a message to a group chat out of the blue.\n\n"
        "RECENT GOSSIP/FACTS you know:\n{gossip_lines}\n\n"
        "Task:\n"
        "Decide if you want to say something.\n"
        "1. If you have interesting gossip to share, you might want to share it.\n"
        "2. If it's morning/night, you might want to greet.\n"
        "3. If you are bored, you might want to start a convo.\n\n"
        "Return ONLY the message you want to send.\n"
        "If you don't want to say anything right now (which is totally fine), return ONLY \"NO\"."
    ),
}


def _cfg() -> dict[str, Any]:
    return load_prompt_json("persona.json", _DEFAULTS)


def _template(key: str) -> str:
    return str(_cfg().get(key, _DEFAULTS[key]))


def format_chat_lines(messages: Iterable[ChatMessage]) -> str:
    return "\n".join(f"{message.author_name}: {message.content}" for message in messages)


def format_identified_lines(messages: Iterable[ChatMessage]) -> str:
    return "\n".join(f"{message.author_name} ({message.author_id}): {message.content}" for message in messages)


def _quote_lines(lines: Iterable[str]) -> str:
    return "\n".join(f"> {line}" for line in lines)


def build_should_reply_prompt(persona_name: str, content: str, history: Sequence[ChatMessage]) -> str:
    context = list(history)[-SHOULD_REPLY_CONTEXT_MESSAGES:]
    return _template("should_reply_template").format(
        persona_name=persona_name,
        content=content,
        history_lines=format_chat_lines(context),
    )


def build_system_prompt(
    *,
    base_prompt: str,
    location: str,
    display_name: str,
    username: str,
    global_memory: Sequence[Mapping[str, str]],
    user_memory: Sequence[Mapping[str, str]],
    facts: Sequence[Mapping[str, str]],
    relationships: Sequence[Mapping[str, str]],
    other_conversations: Sequence[ChatMessage],
    history: Sequence[ChatMessage],
) -> str:
    memory_lines = [
        *(str(row.get("content", "")) for row in global_memory),
        *(f"{row.get('key', '')}: {row.get('value', '')}" for row in user_memory),
        *(f"{row.get('topic', '')}: {row.get('content', '')}" for row in facts),
    ]
    relationship_lines = [
        f"{row.get('user_id_1', '')} - {row.get('relationship_type', '')} - {row.get('user_id_2', '')}: "
        f"{row.get('description', '')}"
        for row in relationships
    ]
    other_block = ""
    if other_conversations:
        other_block = _template("other_conversations_template").format(
            lines=_quote_lines(f"{message.author_name}: {message.content}" for message in other_conversations),
        )

    return _template("system_prompt_template").format(
        base_prompt=base_prompt.strip(),
        memory_lines=_quote_lines(memory_lines),
        relationship_lines=_quote_lines(relationship_lines),
        other_conversations=other_block,
        location=location,
        display_name=display_name,
        username=username,
        split_instruction=_template("split_instruction"),
        history_lines=format_chat_lines(history),
    ).strip()


def build_gossip_prompt(persona_name: str, conversations: Sequence[ChatMessage]) -> str:
    return _template("gossip_template").format(
        persona_name=persona_name,
        conversation_lines=format_chat_lines(conversations),
    )


def build_user_memories_prompt(persona_name: str, conversations: Sequence[ChatMessage]) -> str:
    return _template("user_memories_template").format(
        persona_name=persona_name,
        conversation_lines=format_identified_lines(conversations),
    )


def build_proactive_prompt(persona_name: str, time_label: str, gossip: Sequence[str]) -> str:
    return _template("proactive_template").format(
        persona_name=persona_name,
        time_label=time_label,
        gossip_lines="\n".join(f"- {item}" for item in gossip) or "- (nothing new)",
    )
