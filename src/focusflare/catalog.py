"""Read-only lookup tables used by the clustering, merge and scoring stages.

All matching is done on lowercased text with plain substring checks, so the
keywords below are lowercase fragments rather than exact application names.
"""

from types import MappingProxyType
from typing import Mapping, NamedTuple

from focusflare.entities import ActivityLevel, SessionType


class AppCategory(NamedTuple):
    name: str
    weight: float
    keywords: tuple[str, ...]


class KeywordGroup(NamedTuple):
    name: str
    keywords: tuple[str, ...]
    weight: float


# Checked in order, first hit wins
APP_CATEGORIES: tuple[AppCategory, ...] = (
    AppCategory(
        "development", 1.0, ("code", "git", "terminal", "ide", "vscode", "intellij")
    ),
    AppCategory(
        "productivity",
        0.9,
        ("office", "excel", "word", "docs", "sheets", "powerpoint"),
    ),
    AppCategory(
        "research", 0.8, ("browser", "chrome", "firefox", "edge", "documentation")
    ),
    AppCategory(
        "communication", 0.7, ("teams", "slack", "zoom", "skype", "discord", "email")
    ),
    AppCategory("media", 0.6, ("youtube", "spotify", "vlc", "media", "player")),
    AppCategory(
        "entertainment",
        0.5,
        ("netflix", "games", "social", "facebook", "instagram"),
    ),
    AppCategory("system", 0.2, ("explorer", "settings", "control", "system")),
)

UNKNOWN_APP_CATEGORY_WEIGHT = 0.3

ACTIVITY_LEVEL_WEIGHTS: Mapping[ActivityLevel, float] = MappingProxyType(
    {
        ActivityLevel.ACTIVE: 1.0,
        ActivityLevel.PASSIVE: 0.6,
        ActivityLevel.BACKGROUND: 0.3,
        ActivityLevel.IDLE: 0.1,
    }
)

REFERENCE_TITLE_KEYWORDS = ("github", "stackoverflow", "documentation")
EDUCATIONAL_VIDEO_KEYWORDS = ("tutorial", "course")
ENTERTAINMENT_TITLE_KEYWORDS = ("youtube", "netflix", "entertainment")

# Apps in the same group are considered related by the clustering stage
RELATED_APP_GROUPS: tuple[frozenset[str], ...] = (
    frozenset({"chrome", "firefox", "edge", "safari"}),
    frozenset({"word", "excel", "powerpoint", "outlook"}),
    frozenset({"vscode", "intellij", "webstorm", "atom", "sublime"}),
    frozenset({"teams", "zoom", "skype", "discord"}),
)

# Relationship sets used by the merge stage
WORK_APPS = frozenset(
    {
        "visual studio code",
        "vscode",
        "cursor",
        "webstorm",
        "intellij",
        "sublime text",
        "notepad++",
        "atom",
        "vim",
        "emacs",
    }
)
SUPPORT_APPS = frozenset(
    {
        "terminal",
        "cmd",
        "powershell",
        "git",
        "github desktop",
        "postman",
        "insomnia",
        "docker",
        "figma",
        "photoshop",
    }
)
FILE_APPS = frozenset({"explorer", "finder", "file manager", "total commander"})
COMMUNICATION_APPS = frozenset(
    {"slack", "teams", "discord", "zoom", "skype", "telegram"}
)
MEDIA_APPS = frozenset({"youtube", "netflix", "spotify", "vlc", "media player"})

MERGE_RELATIONSHIP_SETS: tuple[frozenset[str], ...] = (
    WORK_APPS,
    SUPPORT_APPS,
    MEDIA_APPS,
    FILE_APPS,
    COMMUNICATION_APPS,
)


DEVELOPMENT_TOOLS: tuple[KeywordGroup, ...] = (
    KeywordGroup("code editors", ("visual studio", "vscode", "vs code"), 15),
    KeywordGroup("jetbrains ides", ("intellij", "webstorm", "pycharm"), 15),
    KeywordGroup("text editors", ("sublime", "atom", "notepad++"), 12),
    KeywordGroup("code hosting", ("github", "gitlab", "bitbucket"), 10),
    KeywordGroup("terminals", ("terminal", "cmd", "powershell", "bash"), 8),
    KeywordGroup("version control", ("git", "commit", "pull request", "merge"), 12),
    KeywordGroup("cloud tooling", ("docker", "kubernetes", "aws", "azure"), 10),
)

PROFESSIONAL_SOFTWARE: tuple[KeywordGroup, ...] = (
    KeywordGroup("design tools", ("figma", "sketch", "adobe"), 12),
    KeywordGroup("creative suite", ("photoshop", "illustrator", "indesign"), 12),
    KeywordGroup("office suite", ("excel", "powerpoint", "word"), 10),
    KeywordGroup("online office", ("google docs", "sheets", "slides"), 10),
    KeywordGroup("team chat", ("slack", "teams", "zoom"), 8),
    KeywordGroup("project tracking", ("jira", "confluence", "trello"), 8),
    KeywordGroup("databases", ("database", "sql", "mongodb"), 10),
)

RESEARCH_PLATFORMS: tuple[KeywordGroup, ...] = (
    KeywordGroup("q&a sites", ("stack overflow", "stackoverflow"), 20),
    KeywordGroup("encyclopedias", ("wikipedia", "wiki"), 15),
    KeywordGroup("online courses", ("coursera", "udemy", "khan academy"), 18),
    KeywordGroup("documentation", ("documentation", "docs", "api"), 15),
    KeywordGroup("tutorials", ("tutorial", "guide", "how to"), 12),
    KeywordGroup("academic search", ("arxiv", "scholar", "pubmed"), 18),
    KeywordGroup("technical blogs", ("medium", "dev.to", "blog"), 8),
)

ENTERTAINMENT_PLATFORMS: tuple[KeywordGroup, ...] = (
    KeywordGroup("video streaming", ("netflix", "hulu", "disney", "prime video"), 18),
    KeywordGroup("live streaming", ("twitch", "streaming", "stream"), 15),
    KeywordGroup("social media", ("facebook", "instagram", "twitter", "tiktok"), 12),
    KeywordGroup("forums and memes", ("reddit", "meme", "funny"), 10),
    KeywordGroup("gaming", ("game", "gaming", "steam"), 15),
    KeywordGroup("shopping", ("shopping", "amazon", "ebay"), 8),
    KeywordGroup("news and sports", ("news", "sports", "entertainment"), 6),
)

QUICK_TASK_INDICATORS = KeywordGroup(
    "quick checks", ("quick", "brief", "check", "glance", "notification"), 8
)
IDLE_INDICATORS = KeywordGroup(
    "idle indicators", ("idle", "screen saver", "lock", "away"), 12
)
PROFESSIONAL_CONTEXT = KeywordGroup(
    "professional context",
    ("project", "client", "meeting", "deadline", "report", "proposal"),
    6,
)
LEARNING_CONTEXT = KeywordGroup(
    "learning context", ("study", "learn", "course", "training", "certification"), 8
)

CODE_EXTENSIONS: tuple[str, ...] = (
    ".js",
    ".ts",
    ".tsx",
    ".jsx",
    ".py",
    ".java",
    ".cpp",
    ".cs",
    ".php",
    ".rb",
    ".go",
    ".rs",
    ".vue",
    ".svelte",
    ".html",
    ".css",
    ".scss",
    ".sql",
)
CODE_EXTENSION_WEIGHT = 8

YOUTUBE_LEARNING_KEYWORDS = ("tutorial", "course", "learn", "lesson")
YOUTUBE_MUSIC_KEYWORDS = ("music", "playlist")
EMAIL_KEYWORDS = ("email", "gmail", "calendar")

BROWSER_KEYWORDS = ("chrome", "firefox", "edge")
BROWSER_DOMAIN_WEIGHT = 5
BROWSER_DOMAINS: Mapping[SessionType, tuple[str, ...]] = MappingProxyType(
    {
        SessionType.FOCUSED_WORK: (
            "github",
            "gitlab",
            "aws",
            "azure",
            "google workspace",
            "office 365",
        ),
        SessionType.RESEARCH: (
            "stackoverflow",
            "wikipedia",
            "documentation",
            "tutorial",
        ),
        SessionType.ENTERTAINMENT: (
            "youtube",
            "netflix",
            "facebook",
            "instagram",
            "reddit",
        ),
    }
)
