# System instructions and user-message builders for the packaging stages

from prompt_packager.state import PackagePromptPayload

STANDARDIZE_SYSTEM = """You are a prompt engineer specializing in Lovable.dev build prompts.
Your job is to take a raw user-submitted prompt and rewrite it into a clean, well-structured,
production-ready prompt that follows best practices.

Rules:
- Keep the user's intent and requirements intact
- Organize into clear sections: Objective, Stack, Routes, Schema, UI/UX, Integrations, Admin Panel, Acceptance Criteria
- Remove redundancy, fix grammar, clarify vague instructions
- Add missing but obvious requirements (e.g. responsive design, error handling)
- Use imperative voice ("Create...", "Implement...", "Add...")
- If the prompt describes a SaaS, marketplace, platform, or any multi-user product, MUST include an "Admin Panel" section with:
  • A /admin route with a sidebar shell layout
  • Dashboard overview with key metrics (users, revenue, activity)
  • User/customer management (list, search, view details, suspend/activate)
  • Content or entity management relevant to the product domain
  • Settings page for system configuration
  • Role-based access control (admin vs regular user)
  • If payments/subscriptions exist: payments table, refund actions, subscription management
- Even if the user didn't mention an admin panel, add it for any SaaS/platform prompt
- Output ONLY the rewritten prompt, no commentary"""

CLASSIFY_SYSTEM = """You are a prompt classifier. Given a build prompt, output a JSON object with:
- "summary": A 1-2 sentence summary of what the prompt builds (max 150 chars)
- "tags": An array of 2-5 lowercase tags describing the tech/domain (e.g. ["auth","stripe","dashboard","crud"])
- "complexity": One of "simple", "medium", "complex", "advanced"

Output ONLY valid JSON, no markdown fences, no commentary."""


def build_standardize_input(payload: PackagePromptPayload) -> str:
    """User message for the standardize stage: structured context + raw prompt."""
    integrations = ", ".join(payload.integrations) or "None specified"
    return (
        f"Title: {payload.title}\n"
        f"Problem: {payload.problem}\n"
        f"Scope: {payload.scope}\n"
        f"Integrations: {integrations}\n"
        f"\n"
        f"Raw Prompt:\n"
        f"{payload.raw_prompt}"
    )
