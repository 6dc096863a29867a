"""Keyword-based scam and urgency classifier.

Needs no network access or API key, so it is always the last analyzer in the
chain and always returns a result.
"""
from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass

from emergency_connect.schemas.analysis import (
    ActionGuideItem,
    AnalysisResult,
    ConversationMessage,
    RiskLevel,
    ScamSignal,
    UrgencyLevel,
    UrgencyResult,
)

from .base import conversation_text

HIGH_RISK_SCORE = 5
MEDIUM_RISK_SCORE = 2
EMERGENCY_SCORE = 2
CAUTION_SCORE = 2
MAX_REASON_TERMS = 3


@dataclass(frozen=True)
class KeywordCategory:
    """A family of scam keywords reported under one label."""

    id: str
    label: str
    keywords: tuple[str, ...]


SCAM_CATEGORIES: tuple[KeywordCategory, ...] = (
    KeywordCategory(
        "money",
        "금전 요구",
        ("송금", "입금", "계좌", "이체", "돈", "원", "만원", "결제", "현금", "비트코인", "코인"),
    ),
    KeywordCategory(
        "personal_info",
        "개인정보 요구",
        ("비밀번호", "인증번호", "주민등록", "신분증", "계좌번호", "카드번호", "OTP", "본인확인"),
    ),
    KeywordCategory(
        "impersonation",
        "기관 사칭",
        ("경찰", "검찰", "금감원", "금융감독", "은행", "법원", "세무서", "국세청"),
    ),
    KeywordCategory(
        "urgency",
        "긴급성 조장",
        ("급해", "지금 당장", "바로", "즉시", "시간이 없", "빨리", "서둘러", "긴급"),
    ),
    KeywordCategory(
        "threat",
        "협박/위협",
        ("체포", "구속", "벌금", "처벌", "고소", "신고", "블랙리스트", "동결"),
    ),
    KeywordCategory(
        "link",
        "의심 링크/앱",
        ("http://", "https://", "bit.ly", "링크", "클릭", "접속", "다운로드", "앱 설치"),
    ),
    KeywordCategory(
        "family",
        "가족 사칭 가능성",
        ("엄마", "아빠", "아들", "딸", "아버지", "어머니", "할머니", "할아버지"),
    ),
)

EMERGENCY_KEYWORDS: tuple[str, ...] = (
    "도움", "살려", "위험", "무서", "협박", "납치", "폭력", "죽",
    "경찰", "신고", "체포", "구속", "감금", "도망", "다쳐",
)

CAUTION_KEYWORDS: tuple[str, ...] = (
    "송금", "입금", "계좌", "돈", "결제", "비밀번호", "인증번호",
    "링크", "클릭", "의심", "이상", "불안", "걱정",
)

GUIDE_CONTACT_PROTECTED = ActionGuideItem(
    id="contact-victim",
    title="피해자에게 직접 연락",
    detail="전화 또는 직접 만나서 상황을 확인하세요. 문자/채팅만으로 판단하지 마세요.",
)
GUIDE_MONITOR = ActionGuideItem(
    id="monitor",
    title="상황 모니터링",
    detail="현재 위험도가 낮지만 대화 내용을 계속 주시하세요.",
)
GUIDE_NO_TRANSFER = ActionGuideItem(
    id="no-transfer",
    title="금전 이체 중지",
    detail="어떤 명목이든 돈을 보내지 않도록 피해자에게 알리세요.",
)
GUIDE_VERIFY_IDENTITY = ActionGuideItem(
    id="verify-identity",
    title="상대방 신원 확인",
    detail="전화를 건 사람이나 메시지를 보낸 사람의 실제 신원을 확인하세요.",
)
GUIDE_CALL_POLICE = ActionGuideItem(
    id="call-police",
    title="경찰 신고 (112)",
    detail="피싱 사기가 의심되면 즉시 112에 신고하세요.",
)
GUIDE_CALL_REGULATOR = ActionGuideItem(
    id="call-financial",
    title="금융감독원 신고 (1332)",
    detail="금융 피해가 의심되면 금융감독원에 신고하세요.",
)
GUIDE_FREEZE_ACCOUNT = ActionGuideItem(
    id="block-account",
    title="계좌 지급정지 요청",
    detail="이미 송금한 경우, 해당 은행에 즉시 지급정지를 요청하세요.",
)
GUIDE_NO_CLICK = ActionGuideItem(
    id="no-click",
    title="링크 클릭 금지",
    detail="의심스러운 링크는 절대 클릭하지 마세요. 악성 앱 설치 위험이 있습니다.",
)


def risk_level_for(score: int) -> RiskLevel:
    """Map a keyword score onto a risk tier."""
    if score >= HIGH_RISK_SCORE:
        return "HIGH"
    if score >= MEDIUM_RISK_SCORE:
        return "MEDIUM"
    return "LOW"


def _matches(text: str, keywords: Sequence[str]) -> list[str]:
    return [keyword for keyword in keywords if keyword in text]


class RuleBasedAnalyzer:
    """Keyword/pattern analyzer used when no external provider can answer."""

    name = "rule_based"

    async def analyze(self, messages: Sequence[ConversationMessage]) -> AnalysisResult:
        return self.analyze_text(messages)

    async def assess_urgency(self, messages: Sequence[ConversationMessage]) -> UrgencyResult:
        return self.assess_urgency_text(messages)

    def analyze_text(self, messages: Sequence[ConversationMessage]) -> AnalysisResult:
        """Score every category and build the summary and action guide."""
        text = conversation_text(messages)
        signals: list[ScamSignal] = []
        matched_ids: set[str] = set()
        score = 0

        for category in SCAM_CATEGORIES:
            matched = _matches(text, category.keywords)
            if not matched:
                continue
            matched_ids.add(category.id)
            signals.append(
                ScamSignal(keyword=category.label, context=f"탐지된 키워드: {', '.join(matched)}")
            )
            score += len(matched)

        level = risk_level_for(score)

        if signals:
            labels = ", ".join(s.keyword for s in signals)
            summary = (
                f"총 {len(messages)}개의 메시지를 분석했습니다. "
                f"{labels} 패턴이 감지되었습니다. 위험도: {level}."
            )
        else:
            summary = (
                f"총 {len(messages)}개의 메시지를 분석했습니다. "
                "현재까지 뚜렷한 피싱 징후는 발견되지 않았습니다."
            )

        return AnalysisResult(
            summary_text=summary,
            scam_risk_level=level,
            scam_signals=signals,
            action_guide=self.action_guide(level, has_link="link" in matched_ids),
            source=self.name,
        )

    @staticmethod
    def action_guide(level: RiskLevel, *, has_link: bool) -> list[ActionGuideItem]:
        """Assemble the checklist additively by risk tier."""
        guide = [GUIDE_CONTACT_PROTECTED]
        if level == "LOW":
            guide.append(GUIDE_MONITOR)
        else:
            guide.extend([GUIDE_NO_TRANSFER, GUIDE_VERIFY_IDENTITY])
        if level == "HIGH":
            guide.extend([GUIDE_CALL_POLICE, GUIDE_CALL_REGULATOR, GUIDE_FREEZE_ACCOUNT])
        if has_link:
            guide.append(GUIDE_NO_CLICK)
        return guide

    def assess_urgency_text(self, messages: Sequence[ConversationMessage]) -> UrgencyResult:
        """Classify urgency from independent emergency and caution keyword sets."""
        text = conversation_text(messages)
        emergency = _matches(text, EMERGENCY_KEYWORDS)
        caution = _matches(text, CAUTION_KEYWORDS)

        level: UrgencyLevel
        if len(emergency) >= EMERGENCY_SCORE:
            level = "EMERGENCY"
            reason = f"긴급 키워드 감지: {', '.join(emergency[:MAX_REASON_TERMS])}"
        elif emergency or len(caution) >= CAUTION_SCORE:
            level = "CAUTION"
            terms = (emergency + caution)[:MAX_REASON_TERMS]
            reason = f"주의 키워드 감지: {', '.join(terms)}"
        else:
            level = "SAFE"
            reason = "뚜렷한 위험 징후가 발견되지 않았습니다."

        return UrgencyResult(level=level, reason=reason, source=self.name)
