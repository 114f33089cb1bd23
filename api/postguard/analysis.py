import re
from typing import Iterable, List, Mapping

HASHTAG_RE = re.compile(r"#\w+")
MENTION_RE = re.compile(r"@\w+")
LINK_RE = re.compile(r"https?://\S+")

OPTIMAL_TEXT_LENGTH = {"instagram": 150, "twitter": 100, "facebook": 200, "linkedin": 300, "tiktok": 150}

WEIGHTS = {
    "text_length": 0.10,
    "hashtags": 0.15,
    "engagement": 0.17,
    "visuals": 0.35,
}


def extract_features(text: str | None, media: Iterable[Mapping[str, str]], platform: str) -> dict:
    text = text or ""
    media = list(media)
    return {
        "text_length": len(text),
        "hashtag_count": len(HASHTAG_RE.findall(text)),
        "mention_count": len(MENTION_RE.findall(text)),
        "question_count": text.count("?"),
        "exclamation_count": text.count("!"),
        "link_count": len(LINK_RE.findall(text)),
        "image_count": sum(1 for m in media if m.get("type") == "image"),
        "video_count": sum(1 for m in media if m.get("type") == "video"),
        "platform": platform,
    }


def _text_length_factor(length: int, platform: str) -> float:
    optimal = OPTIMAL_TEXT_LENGTH.get(platform, 150)
    return max(0.0, 1 - abs(length - optimal) / optimal)


def _hashtag_factor(count: int) -> float:
    # 3-7 hashtags is the sweet spot
    if 3 <= count <= 7:
        return 1.0
    if count == 0 or count > 10:
        return 0.0
    return 0.5


def _engagement_factor(questions: int, exclamations: int) -> float:
    total = questions + exclamations
    if total == 0:
        return 0.3
    if total == 1:
        return 1.0
    if total == 2:
        return 0.8
    return 0.5


def _visual_factor(images: int, videos: int) -> float:
    if videos > 0:
        return 1.0
    if images == 1:
        return 0.9
    if images > 1:
        return 0.7
    return 0.2


def score_content(features: Mapping) -> float:
    """Weighted 0-100 heuristic score for a post."""
    weighted = (
        _text_length_factor(features["text_length"], features["platform"]) * WEIGHTS["text_length"]
        + _hashtag_factor(features["hashtag_count"]) * WEIGHTS["hashtags"]
        + _engagement_factor(features["question_count"], features["exclamation_count"]) * WEIGHTS["engagement"]
        + _visual_factor(features["image_count"], features["video_count"]) * WEIGHTS["visuals"]
    )
    score = weighted / sum(WEIGHTS.values()) * 100
    return round(min(max(score, 0.0), 100.0), 2)


def recommendations_for(features: Mapping) -> List[str]:
    tips = []
    if features["hashtag_count"] < 3:
        tips.append("Add a few relevant hashtags (3-7 works best).")
    elif features["hashtag_count"] > 10:
        tips.append("Trim hashtags; more than 10 reads as spam.")
    if features["image_count"] == 0 and features["video_count"] == 0:
        tips.append("Attach an image or video to lift engagement.")
    if features["question_count"] == 0:
        tips.append("Ask a question to invite comments.")
    if _text_length_factor(features["text_length"], features["platform"]) < 0.5:
        tips.append(f"Aim for about {OPTIMAL_TEXT_LENGTH.get(features['platform'], 150)} characters on {features['platform']}.")
    return tips
