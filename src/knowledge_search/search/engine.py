"""Knowledge base search: keyword search with LLM answers and enhanced search.

Enhanced search runs a small pipeline over the SQL store:
intent recognition, synonym expansion, user preference boosting,
relevance scoring, follow-up suggestions and analytics logging.
"""

import json
import logging
import math
import re
import time
from datetime import datetime, timedelta, timezone
from typing import Any

from sqlalchemy import case, func, or_, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from knowledge_search.config import settings
from knowledge_search.db.models import (
    KnowledgeEntry,
    KnowledgeFeedback,
    SearchAnalytics,
    SearchSession,
    UserSearchPreferences,
    load_json,
    utcnow,
)
from knowledge_search.rag.exceptions import LLMError
from knowledge_search.rag.factory import get_llm
from knowledge_search.rag.llm import BaseLLM
from knowledge_search.search.models import (
    AnswerResponse,
    EnhancedSearchResponse,
    MatchType,
    SearchFilters,
    SearchResult,
)

logger = logging.getLogger(__name__)

SYNONYM_MAP: dict[str, list[str]] = {
    "login": ["entrar", "acessar", "signin", "access", "autenticacao", "autenticação"],
    "desafio": ["challenge", "40-dias", "transformacao", "transformação", "jornada"],
    "ritual": ["rotina", "habito", "hábito", "routine", "manhã", "noite"],
    "agenda": ["calendario", "calendário", "schedule", "compromisso", "evento"],
    "comunidade": ["feed", "social", "alcateia", "alcatéia", "lobos", "wolves"],
    "forja": ["fitness", "treino", "workout", "exercicio", "exercício", "saude", "saúde"],
    "metas": ["objetivos", "goals", "targets", "alvos", "propositos", "propósitos"],
    "manifestacao": [
        "manifestação",
        "lei-da-atracao",
        "lei-da-atração",
        "visualizacao",
        "visualização",
    ],
    "produtividade": ["pomodoro", "tarefas", "foco", "flow", "concentracao", "concentração"],
    "sequencia": ["sequência", "streak", "dias-consecutivos", "consistencia", "consistência"],
}

# Checked in order; first match wins
INTENT_PATTERNS: dict[str, list[str]] = {
    "how_to": ["como", "how", "tutorial", "passo a passo", "guia"],
    "what_is": ["o que é", "what is", "definição", "explicar"],
    "troubleshooting": [
        "não funciona",
        "erro",
        "problema",
        "bug",
        "falha",
        "not working",
        "error",
        "problem",
    ],
    "where_find": ["onde", "where", "encontrar", "localizar", "acessar"],
}

TOPIC_SUGGESTIONS: list[tuple[tuple[str, ...], list[str]]] = [
    (("login", "entrar"), ["recuperar senha", "criar conta", "problemas de acesso"]),
    (("desafio", "challenge"), ["configurar rituais", "acompanhar progresso", "comunidade"]),
]

DEFAULT_SUGGESTIONS = [
    "como fazer login",
    "desafio caverna",
    "configurar rituais",
    "comunidade",
    "recuperar senha",
    "central caverna",
]

MAX_RELEVANCE = 5.0
MAX_SUGGESTIONS = 5
MAX_POPULAR_QUERIES = 8
BASIC_FALLBACK_LIMIT = 10

NOT_FOUND_ANSWER = {
    "pt": "Desculpe, não encontrei informações sobre isso na documentação do Modo Caverna.",
    "en": "Sorry, I couldn't find information about that in the Modo Caverna documentation.",
}
NO_ANSWER = {
    "pt": "Não consegui gerar uma resposta.",
    "en": "Could not generate a response.",
}
SYSTEM_PROMPT = {
    "pt": (
        "Você é um assistente especializado na documentação do Modo Caverna. "
        "Responda perguntas com base apenas nas informações fornecidas. "
        "Seja claro, útil e responda em português brasileiro. "
        "Se a informação não estiver disponível, diga que não encontrou na documentação."
    ),
    "en": (
        "You are an assistant specialized in Modo Caverna documentation. "
        "Answer questions based only on the provided information. "
        "Be clear, helpful, and respond in English. "
        "If information is not available, say you couldn't find it in the documentation."
    ),
}
USER_PROMPT = {
    "pt": 'Com base na documentação do Modo Caverna abaixo, responda esta pergunta: "{query}"\n\nDocumentação:\n{context}',
    "en": 'Based on the Modo Caverna documentation below, answer this question: "{query}"\n\nDocumentation:\n{context}',
}


def recognize_intent(query: str) -> str:
    lowered = query.lower()
    for intent, patterns in INTENT_PATTERNS.items():
        if any(pattern in lowered for pattern in patterns):
            return intent
    return "general"


def _contains_word(text: str, word: str) -> bool:
    return re.search(rf"(?<!\w){re.escape(word)}(?!\w)", text, re.IGNORECASE) is not None


def expand_synonyms(query: str) -> list[str]:
    """Return the query followed by synonyms of any whole-word term it contains.

    A match on a canonical term adds its synonyms; a match on a synonym adds
    the canonical term and the remaining synonyms.
    """
    terms = [query.strip()]
    for term, synonyms in SYNONYM_MAP.items():
        if _contains_word(query, term):
            terms.extend(synonyms)
        for synonym in synonyms:
            if _contains_word(query, synonym):
                terms.append(term)
                terms.extend(s for s in synonyms if s != synonym)
                break

    seen: set[str] = set()
    unique = []
    for term in terms:
        key = term.lower()
        if term and key not in seen:
            seen.add(key)
            unique.append(term)
    return unique


def relevance_score(query: str, entry: KnowledgeEntry) -> float:
    """Score an entry against the original (unexpanded) query, capped at 5.0."""
    lowered = query.lower()
    score = 0.0
    if lowered in (entry.functionality or "").lower():
        score += 2.0
    if lowered in (entry.content_text or "").lower():
        score += 1.0
    if entry.user_questions_pt and lowered in entry.user_questions_pt.lower():
        score += 1.5
    if entry.user_rating:
        score += entry.user_rating * 0.1
    if entry.popularity_score:
        score += math.log(entry.popularity_score + 1) * 0.1
    return min(score, MAX_RELEVANCE)


def match_type(query: str, expanded_terms: list[str], entry: KnowledgeEntry) -> MatchType:
    lowered = query.lower()
    functionality = (entry.functionality or "").lower()
    content = (entry.content_text or "").lower()
    if lowered in functionality or lowered in content:
        return "exact"

    haystack = " ".join(
        [functionality, content, (entry.user_questions_pt or "").lower(), (entry.tags or "").lower()]
    )
    if any(term.lower() in haystack for term in expanded_terms[1:]):
        return "synonym"
    return "semantic"


def suggestions_for(query: str, results: list[SearchResult]) -> list[str]:
    suggestions: list[str] = []
    categories = list(dict.fromkeys(r.category for r in results))
    suggestions.extend(categories[:3])

    lowered = query.lower()
    for triggers, follow_ups in TOPIC_SUGGESTIONS:
        if any(t in lowered for t in triggers):
            suggestions.extend(follow_ups)

    return list(dict.fromkeys(suggestions))[:MAX_SUGGESTIONS]


def to_result(
    entry: KnowledgeEntry, score: float, kind: MatchType
) -> SearchResult:
    return SearchResult(
        id=entry.id,
        title=entry.title,
        content_text=entry.content_text or "",
        category=entry.category,
        subcategory=entry.subcategory or entry.category,
        difficulty_level=entry.difficulty_level or "basico",
        estimated_time=entry.estimated_time or 5,
        quick_action=entry.quick_action or "Ver detalhes",
        ui_elements_pt=load_json(entry.ui_elements_pt, []),
        troubleshooting=entry.troubleshooting,
        step_by_step_guide=load_json(entry.step_by_step_guide, []),
        philosophy_integration=entry.philosophy_integration,
        relevance_score=round(score, 3),
        match_type=kind,
    )


def entry_summary(entry: KnowledgeEntry) -> dict[str, Any]:
    return {
        "id": entry.id,
        "title": entry.title,
        "feature_module": entry.feature_module,
        "functionality": entry.functionality,
        "description": entry.description,
        "category": entry.category,
        "subcategory": entry.subcategory,
        "content_text": entry.content_text,
        "quick_action": entry.quick_action,
        "ui_elements_pt": load_json(entry.ui_elements_pt, []),
        "difficulty_level": entry.difficulty_level,
        "estimated_time": entry.estimated_time,
        "user_rating": entry.user_rating,
        "popularity_score": entry.popularity_score,
    }


class KnowledgeSearchEngine:
    """Search operations over knowledge entries for one database session."""

    def __init__(self, session: AsyncSession, llm: BaseLLM | None = None):
        self.session = session
        self._llm = llm

    async def _get_llm(self) -> BaseLLM:
        if self._llm is None:
            self._llm = await get_llm()
        return self._llm

    async def basic_search(
        self,
        query: str,
        language: str = "pt",
        category: str | None = None,
        user_id: str | None = None,
    ) -> AnswerResponse:
        """Keyword search with an LLM-written answer.

        Args:
            query: User question
            language: "pt" or "en", selects prompts and fallback messages
            category: Optional category filter
            user_id: Recorded on the search session when known

        Returns:
            AnswerResponse with the answer and the entries used as context
        """
        started = time.perf_counter()
        language = language if language in SYSTEM_PROMPT else "pt"
        columns = (
            KnowledgeEntry.content_text,
            KnowledgeEntry.functionality,
            KnowledgeEntry.description,
            KnowledgeEntry.user_questions_en,
            KnowledgeEntry.user_questions_pt,
        )

        stmt = select(KnowledgeEntry).where(
            or_(*(column.icontains(query, autoescape=True) for column in columns))
        )
        if category:
            stmt = stmt.where(KnowledgeEntry.category == category)
        stmt = stmt.order_by(KnowledgeEntry.feature_module.asc()).limit(settings.SEARCH_TOP_K)
        entries = list((await self.session.execute(stmt)).scalars().all())

        if not entries:
            return AnswerResponse(
                answer=NOT_FOUND_ANSWER[language],
                relevant_entries=[],
                response_time_ms=int((time.perf_counter() - started) * 1000),
            )

        context = "\n---\n".join(
            f"Feature: {e.feature_module} - {e.functionality}\n"
            f"Description: {e.description}\n"
            f"UI Elements: {e.ui_elements or 'N/A'}\n"
            f"Content: {e.content_text}\n"
            for e in entries
        )
        try:
            llm = await self._get_llm()
            answer = await llm.generate(
                USER_PROMPT[language].format(query=query, context=context),
                system=SYSTEM_PROMPT[language],
            )
        except LLMError as e:
            logger.error(f"Answer generation failed for '{query[:50]}': {e}")
            answer = ""
        answer = answer.strip() or NO_ANSWER[language]

        response_time_ms = int((time.perf_counter() - started) * 1000)
        self.session.add(
            SearchSession(
                user_id=user_id,
                query=query,
                language=language,
                answer=answer,
                relevant_entry_ids=json.dumps([e.id for e in entries]),
                response_time_ms=response_time_ms,
            )
        )
        await self.session.commit()

        return AnswerResponse(
            answer=answer,
            relevant_entries=[entry_summary(e) for e in entries],
            response_time_ms=response_time_ms,
        )

    async def enhanced_search(
        self,
        query: str,
        user_id: str | None = None,
        filters: SearchFilters | None = None,
        language: str = "pt",
    ) -> EnhancedSearchResponse:
        """Run the full enhanced search pipeline.

        Falls back to a plain keyword search with intent "general" when the
        pipeline hits a database error.
        """
        started = time.perf_counter()
        filters = filters or SearchFilters()

        try:
            intent = recognize_intent(query)
            expanded = expand_synonyms(query)
            preferred = await self._preferred_categories(user_id) if user_id else []
            entries = await self._search_entries(expanded, filters, preferred)

            results = [
                to_result(e, relevance_score(query, e), match_type(query, expanded, e))
                for e in entries
            ]
            suggestions = suggestions_for(query, results)
            response_time_ms = int((time.perf_counter() - started) * 1000)

            await self._log_analytics(
                query, user_id, len(results), response_time_ms, intent, filters
            )
            return EnhancedSearchResponse(
                results=results[: settings.ENHANCED_SEARCH_MAX_RESULTS],
                intent=intent,
                suggestions=suggestions,
                total_results=len(results),
                response_time_ms=response_time_ms,
                expanded_terms=expanded,
            )
        except SQLAlchemyError as e:
            logger.error(f"Enhanced search failed, falling back to basic search: {e}")
            await self.session.rollback()
            results = await self._fallback_search(query, filters)
            return EnhancedSearchResponse(
                results=results,
                intent="general",
                suggestions=[],
                total_results=len(results),
                response_time_ms=int((time.perf_counter() - started) * 1000),
            )

    async def _preferred_categories(self, user_id: str) -> list[str]:
        prefs = (
            await self.session.execute(
                select(UserSearchPreferences).where(UserSearchPreferences.user_id == user_id)
            )
        ).scalar_one_or_none()
        if prefs is None:
            return []
        return load_json(prefs.preferred_categories, [])

    async def _search_entries(
        self,
        terms: list[str],
        filters: SearchFilters,
        preferred_categories: list[str],
    ) -> list[KnowledgeEntry]:
        columns = (
            KnowledgeEntry.functionality,
            KnowledgeEntry.content_text,
            KnowledgeEntry.user_questions_pt,
            KnowledgeEntry.user_questions_en,
            KnowledgeEntry.tags,
            KnowledgeEntry.troubleshooting,
        )
        matches = [
            column.icontains(term, autoescape=True) for term in terms for column in columns
        ]

        stmt = select(KnowledgeEntry).where(KnowledgeEntry.is_active.is_(True), or_(*matches))
        if filters.category:
            stmt = stmt.where(KnowledgeEntry.category == filters.category)
        if filters.difficulty:
            stmt = stmt.where(KnowledgeEntry.difficulty_level == filters.difficulty)
        if filters.estimated_time:
            stmt = stmt.where(KnowledgeEntry.estimated_time <= filters.estimated_time)

        ordering = []
        if preferred_categories:
            ordering.append(
                case((KnowledgeEntry.category.in_(preferred_categories), 0), else_=1)
            )
        ordering.extend(
            [
                KnowledgeEntry.popularity_score.desc(),
                KnowledgeEntry.user_rating.desc(),
                KnowledgeEntry.id.asc(),
            ]
        )
        result = await self.session.execute(stmt.order_by(*ordering))
        return list(result.scalars().all())

    async def _fallback_search(self, query: str, filters: SearchFilters) -> list[SearchResult]:
        stmt = select(KnowledgeEntry).where(
            or_(
                KnowledgeEntry.content_text.icontains(query, autoescape=True),
                KnowledgeEntry.user_questions_pt.icontains(query, autoescape=True),
            )
        )
        if filters.category:
            stmt = stmt.where(KnowledgeEntry.category == filters.category)
        stmt = stmt.order_by(KnowledgeEntry.id).limit(BASIC_FALLBACK_LIMIT)
        try:
            entries = (await self.session.execute(stmt)).scalars().all()
        except SQLAlchemyError as e:
            logger.error(f"Fallback search failed: {e}")
            return []
        return [to_result(e, 0.5, "exact") for e in entries]

    async def _log_analytics(
        self,
        query: str,
        user_id: str | None,
        results_count: int,
        response_time_ms: int,
        intent: str,
        filters: SearchFilters,
    ) -> None:
        self.session.add(
            SearchAnalytics(
                query=query,
                user_id=user_id,
                results_count=results_count,
                response_time_ms=response_time_ms,
                intent_detected=intent,
                filters_used=json.dumps(filters.to_dict()),
            )
        )
        await self.session.commit()

    async def submit_feedback(
        self,
        entry_id: int,
        user_id: str,
        rating: int | None = None,
        helpful: bool | None = None,
        comment: str | None = None,
        feedback_type: str = "rating",
    ) -> KnowledgeFeedback:
        """Store feedback on an entry and refresh its rating when one is given.

        Raises:
            ValueError: If the rating is outside 1..5
            LookupError: If the entry does not exist
        """
        if rating is not None and not 1 <= rating <= 5:
            raise ValueError("Rating must be between 1 and 5")

        entry = await self.session.get(KnowledgeEntry, entry_id)
        if entry is None:
            raise LookupError(f"Knowledge entry {entry_id} not found")

        feedback = KnowledgeFeedback(
            knowledge_entry_id=entry_id,
            user_id=user_id,
            rating=rating,
            helpful=helpful,
            comment=comment,
            feedback_type=feedback_type or "rating",
        )
        self.session.add(feedback)
        await self.session.flush()

        if rating is not None:
            average = (
                await self.session.execute(
                    select(func.avg(KnowledgeFeedback.rating)).where(
                        KnowledgeFeedback.knowledge_entry_id == entry_id,
                        KnowledgeFeedback.rating.is_not(None),
                    )
                )
            ).scalar_one()
            entry.user_rating = float(average or 0.0)
            entry.popularity_score = (entry.popularity_score or 0) + 1

        await self.session.commit()
        await self.session.refresh(feedback)
        logger.info(
            f"Feedback submitted: entry={entry_id}, user={user_id}, "
            f"rating={rating}, type={feedback.feedback_type}"
        )
        return feedback

    async def popular_entries(self, limit: int = 10) -> list[dict[str, Any]]:
        result = await self.session.execute(
            select(KnowledgeEntry)
            .where(KnowledgeEntry.is_active.is_(True))
            .order_by(KnowledgeEntry.popularity_score.desc(), KnowledgeEntry.user_rating.desc())
            .limit(limit)
        )
        return [entry_summary(e) for e in result.scalars().all()]

    async def search_suggestions(self) -> list[str]:
        """Frequent successful queries of the last week, padded with defaults."""
        since = utcnow() - timedelta(days=7)
        try:
            rows = await self.session.execute(
                select(SearchAnalytics.query, func.count(SearchAnalytics.id).label("frequency"))
                .where(SearchAnalytics.created_at >= since, SearchAnalytics.results_count > 0)
                .group_by(SearchAnalytics.query)
                .order_by(func.count(SearchAnalytics.id).desc())
                .limit(MAX_POPULAR_QUERIES)
            )
            recent = [query for query, _ in rows.all()]
        except SQLAlchemyError as e:
            logger.error(f"Could not load search suggestions: {e}")
            recent = []
        return list(dict.fromkeys(recent + DEFAULT_SUGGESTIONS))[:MAX_POPULAR_QUERIES]

    async def filter_options(self) -> dict[str, list[str]]:
        categories = await self.session.execute(
            select(KnowledgeEntry.category).distinct().order_by(KnowledgeEntry.category)
        )
        difficulties = await self.session.execute(
            select(KnowledgeEntry.difficulty_level)
            .distinct()
            .order_by(KnowledgeEntry.difficulty_level)
        )
        return {
            "categories": [c for c in categories.scalars().all() if c],
            "difficulty_levels": [d for d in difficulties.scalars().all() if d],
        }

    async def analytics(self, days: int = 30) -> dict[str, Any]:
        """Search and content statistics for the admin dashboard."""
        since = utcnow() - timedelta(days=days)

        total, unique_users, avg_time = (
            await self.session.execute(
                select(
                    func.count(SearchAnalytics.id),
                    func.count(func.distinct(SearchAnalytics.user_id)),
                    func.avg(SearchAnalytics.response_time_ms),
                ).where(SearchAnalytics.created_at >= since)
            )
        ).one()

        helpful, unhelpful = (
            await self.session.execute(
                select(
                    func.sum(case((KnowledgeFeedback.helpful.is_(True), 1), else_=0)),
                    func.sum(case((KnowledgeFeedback.helpful.is_(False), 1), else_=0)),
                ).where(KnowledgeFeedback.created_at >= since)
            )
        ).one()
        helpful, unhelpful = helpful or 0, unhelpful or 0
        rated = helpful + unhelpful

        popular = await self.session.execute(
            select(
                SearchAnalytics.query,
                func.count(SearchAnalytics.id).label("frequency"),
                func.max(SearchAnalytics.intent_detected),
            )
            .where(SearchAnalytics.created_at >= since)
            .group_by(SearchAnalytics.query)
            .order_by(func.count(SearchAnalytics.id).desc())
            .limit(10)
        )

        performance = await self.session.execute(
            select(
                KnowledgeEntry,
                func.count(KnowledgeFeedback.id),
                func.avg(KnowledgeFeedback.rating),
            )
            .outerjoin(KnowledgeFeedback, KnowledgeFeedback.knowledge_entry_id == KnowledgeEntry.id)
            .where(KnowledgeEntry.is_active.is_(True))
            .group_by(KnowledgeEntry.id)
            .order_by(KnowledgeEntry.popularity_score.desc(), KnowledgeEntry.user_rating.desc())
            .limit(15)
        )

        recent_feedback = await self.session.execute(
            select(KnowledgeFeedback, KnowledgeEntry)
            .join(KnowledgeEntry, KnowledgeFeedback.knowledge_entry_id == KnowledgeEntry.id)
            .order_by(KnowledgeFeedback.created_at.desc())
            .limit(20)
        )

        intents = await self.session.execute(
            select(SearchAnalytics.intent_detected, func.count(SearchAnalytics.id))
            .where(SearchAnalytics.created_at >= since)
            .group_by(SearchAnalytics.intent_detected)
            .order_by(func.count(SearchAnalytics.id).desc())
        )

        return {
            "search_stats": {
                "total_searches": total or 0,
                "unique_users": unique_users or 0,
                "avg_response_time": round(avg_time or 0),
                "satisfaction_rate": round(helpful / rated * 100) if rated else 0,
                "satisfied_searches": helpful,
                "unsatisfied_searches": unhelpful,
            },
            "popular_queries": [
                {"query": q, "frequency": freq, "intent_detected": intent}
                for q, freq, intent in popular.all()
            ],
            "content_performance": [
                {
                    "id": entry.id,
                    "title": entry.title,
                    "category": entry.category,
                    "user_rating": entry.user_rating,
                    "popularity_score": entry.popularity_score,
                    "feedback_count": count,
                    "avg_feedback_rating": float(avg) if avg is not None else None,
                }
                for entry, count, avg in performance.all()
            ],
            "recent_feedback": [
                {
                    "id": fb.id,
                    "entry_id": entry.id,
                    "entry_title": entry.title,
                    "user_id": fb.user_id,
                    "rating": fb.rating,
                    "helpful": fb.helpful,
                    "comment": fb.comment,
                    "feedback_type": fb.feedback_type,
                    "created_at": fb.created_at.isoformat() if fb.created_at else None,
                }
                for fb, entry in recent_feedback.all()
            ],
            "intent_distribution": [
                {
                    "intent_detected": intent,
                    "count": count,
                    "percentage": round(count * 100.0 / total, 2) if total else 0.0,
                }
                for intent, count in intents.all()
                if intent
            ],
            "generated_at": datetime.now(timezone.utc).isoformat(),
        }
