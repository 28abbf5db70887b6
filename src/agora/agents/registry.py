"""
Agent registry - resolves agent configuration, models and system prompts.

Configuration resolves local (scope) agent, then global default, then none,
behind a per-process TTL cache. System prompts resolve the agent's own
override, then a stored template, then the role's hardcoded default, and are
then enhanced with the request context.
"""

import re
from datetime import datetime
from typing import Dict, List, Optional, Sequence

from cachetools import TTLCache

from ..core.config import settings
from ..core.logging import logger
from ..storage.base import AgentConfigStore
from .base import AgentConfig, AgentRole, ContextSource, get_role_profile, resolve_first

COMPLEX_QUERY_THRESHOLD = 0.7
CHARACTER_LIMIT_MARKER = "CRITICAL: Your response must be NO MORE THAN"
RESPONSE_STYLE_LIMIT = re.compile(r"Keep responses to no more than (\d+) characters")

_MISSING = object()


def template_names(role: AgentRole) -> List[str]:
    """Template names tried, in order, for a role's system prompt."""
    role_name = role.value
    return [
        f"agent_default_{role_name}",
        f"{role_name}_default",
        f"default_{role_name}",
        role_name,
    ]


def render_template(template: str, scope_id: Optional[str] = None, variables: Optional[Dict[str, str]] = None) -> str:
    """Substitute ``{name}`` placeholders; unknown placeholders are left as is."""
    now = datetime.utcnow()
    values = {
        "deliberation_id": scope_id or "",
        "timestamp": now.isoformat(),
        "date": now.date().isoformat(),
    }
    values.update(variables or {})
    rendered = template
    for name, value in values.items():
        rendered = rendered.replace("{" + name + "}", str(value))
    return rendered


def character_limit(agent: Optional[AgentConfig]) -> Optional[int]:
    if agent is None:
        return None
    if agent.max_response_characters:
        return agent.max_response_characters
    if agent.response_style:
        match = RESPONSE_STYLE_LIMIT.search(agent.response_style)
        if match:
            return int(match.group(1))
    return None


def enhance_prompt(
    prompt: str,
    role: AgentRole,
    agent: Optional[AgentConfig] = None,
    complexity: float = 0.0,
    knowledge_context: Optional[str] = None,
    contributions: Optional[Sequence[str]] = None
) -> str:
    """Append request context to a resolved system prompt."""
    limit = character_limit(agent)
    if limit and CHARACTER_LIMIT_MARKER not in prompt:
        prompt += (
            f"\n\n{CHARACTER_LIMIT_MARKER} {limit} CHARACTERS. This is a hard limit that must be "
            "strictly enforced. Keep responses concise and focused."
        )

    if complexity > COMPLEX_QUERY_THRESHOLD:
        prompt += "\n\nThis is a complex query requiring detailed analysis and nuanced understanding."

    if get_role_profile(role).context_source == ContextSource.CONTRIBUTIONS:
        if contributions:
            prompt += "\n\nCURRENT DELIBERATION MAP:"
            prompt += f"\nThe following {len(contributions)} points have been contributed to this deliberation:\n"
            for index, contribution in enumerate(contributions, 1):
                prompt += f"\n{index}. {contribution}"
            prompt += "\n\nIMPORTANT GUIDELINES:"
            prompt += "\n- ONLY reference the points listed above that actually exist in this deliberation"
            prompt += "\n- DO NOT fabricate discussion points that are not listed"
            prompt += "\n- When referencing a point, use its exact wording as shown above"
            prompt += "\n- When appropriate, encourage users to contribute new points"
        else:
            prompt += "\n\nCURRENT DELIBERATION STATUS: No discussion points have been contributed yet."
            prompt += "\nIMPORTANT: Do not reference any existing discussion points, as none exist yet."
            prompt += "\nEncourage users to contribute structured arguments and positions."

    if knowledge_context:
        prompt += (
            f"\n\nRELEVANT KNOWLEDGE CONTEXT:\n{knowledge_context}\n\n"
            "Use this knowledge to inform your response when relevant, but always provide "
            "balanced and comprehensive information."
        )

    prompt += "\n\nUse British English spelling and grammar throughout your response."
    return prompt


class AgentRegistry:
    """Cached view over the agent configuration store."""

    def __init__(self, config_store: AgentConfigStore, cache: Optional[TTLCache] = None):
        self.config_store = config_store
        self.cache = cache if cache is not None else TTLCache(
            maxsize=settings.agent_cache_size,
            ttl=settings.agent_cache_ttl
        )

    @staticmethod
    def cache_key(role: AgentRole, scope_id: Optional[str]) -> str:
        return f"{role.value}:{scope_id or 'global'}"

    async def resolve_agent(self, role: AgentRole, scope_id: Optional[str] = None) -> Optional[AgentConfig]:
        """Local agent for the scope, else the global default, else None.

        Store errors resolve to None and are not cached.
        """
        key = self.cache_key(role, scope_id)
        cached = self.cache.get(key, _MISSING)
        if cached is not _MISSING:
            return cached

        try:
            local = await self.config_store.find_scoped_agent(role, scope_id) if scope_id else None
            agent = local or await self.config_store.find_default_agent(role)
        except Exception as e:
            logger.error(f"Failed to resolve {role.value} configuration: {e}")
            return None

        if agent is None:
            logger.warning(f"No {role.value} configured for {scope_id or 'global scope'}")
        else:
            logger.debug(f"Resolved {role.value} to {agent.name} ({'global' if agent.is_global else 'local'})")
        self.cache[key] = agent
        return agent

    async def get_agent(self, agent_id: str) -> Optional[AgentConfig]:
        try:
            return await self.config_store.get_agent(agent_id)
        except Exception as e:
            logger.error(f"Failed to load agent {agent_id}: {e}")
            return None

    async def availability(self, scope_id: Optional[str] = None) -> Dict[AgentRole, bool]:
        """Per-role availability: a role is available when a configuration resolves."""
        return {
            role: await self.resolve_agent(role, scope_id) is not None
            for role in AgentRole
        }

    async def _stored_template(self, role: AgentRole, scope_id: Optional[str]) -> Optional[str]:
        scopes = [scope_id, None] if scope_id else [None]
        for scope in scopes:
            for name in template_names(role):
                try:
                    template = await self.config_store.get_prompt_template(name, scope)
                except Exception as e:
                    logger.error(f"Failed to load prompt template {name}: {e}")
                    return None
                if template and template.strip():
                    logger.debug(f"Using prompt template {name} for {role.value}")
                    return template
        return None

    async def resolve_system_prompt(
        self,
        role: AgentRole,
        agent: Optional[AgentConfig] = None,
        scope_id: Optional[str] = None,
        complexity: float = 0.0,
        knowledge_context: Optional[str] = None,
        contributions: Optional[Sequence[str]] = None
    ) -> str:
        """Agent override, then stored template, then role default; always enhanced."""
        override = agent.prompt_override if agent else None
        template = None
        if not override or not override.strip():
            template = await self._stored_template(role, scope_id)
            if template:
                template = render_template(template, scope_id)

        prompt = resolve_first(override, template, default=get_role_profile(role).default_prompt)
        return enhance_prompt(
            prompt,
            role,
            agent=agent,
            complexity=complexity,
            knowledge_context=knowledge_context,
            contributions=contributions
        )
