from __future__ import annotations

from collections.abc import Sequence

from matchmaker.core.rng import RNG

FALLBACK_QUESTIONS: tuple[str, ...] = (
    "What's the most interesting thing you've learned recently?",
    "If you could travel anywhere in the world, where would you go and why?",
    "What's a hobby or skill you've always wanted to learn?",
    "What's your favorite way to spend a weekend?",
    "What's the best book, movie, or show you've experienced lately?",
    "What's something that always makes you smile?",
    "If you could have dinner with anyone, living or dead, who would it be?",
    "What's a goal you're working towards right now?",
    "What's your favorite season and what do you love about it?",
    "What's something you're grateful for today?",
)

# (keywords, question); first matching topic wins
TOPIC_QUESTIONS: tuple[tuple[tuple[str, ...], str], ...] = (
    (("music",), "What's a song that always puts you in a good mood?"),
    (("travel", "adventure"), "What's the most adventurous thing you've ever done?"),
    (("food", "cooking"), "What's a dish you could eat every day and never get tired of?"),
    (("sport", "fitness"), "What's your favorite way to stay active and healthy?"),
    (("art", "creative"), "What's something creative you've made or done that you're proud of?"),
)


class IcebreakerService:
    """
    Picks an opening question for a new chat.

    - Shared interests are checked (sorted) against TOPIC_QUESTIONS.
    - Otherwise a fallback question is drawn with an RNG seeded by the session
      id, so the same session always gets the same question.
    """

    def __init__(self, fallback: Sequence[str] = FALLBACK_QUESTIONS) -> None:
        if not fallback:
            raise ValueError("fallback questions must not be empty")
        self.fallback = tuple(fallback)

    def pick(self, *, session_id: str, interests: Sequence[str]) -> str:
        for interest in sorted(interests):
            for keywords, question in TOPIC_QUESTIONS:
                if any(k in interest for k in keywords):
                    return question
        return RNG(session_id).choice(self.fallback)
