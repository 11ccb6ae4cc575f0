"""Step script for generating presentations on gamma.app.

One item is one presentation: the first slide is pasted into the AI text
importer, every remaining slide is added as an AI-generated card, and the
result is renamed and exported from the dashboard on a best-effort basis.
"""

from __future__ import annotations

from batchpilot.step_script import (
    FINALIZE,
    INSERT_CONTENT,
    INTERACT,
    PAUSE,
    VERIFY_CONTENT,
    WAIT_FOR_COMPLETION,
    WAIT_READY,
    Step,
    StepScript,
    Target,
    click,
)


START_URL = "https://gamma.app/"
DOCS_URL = "https://gamma.app/docs"

_GRID_ITEM = 'div[data-testid="docs-view-doc-grid"] div[data-doc-grid-item-id]'


def build_script() -> StepScript:
    return StepScript(
        name="gamma",
        start_url=START_URL,
        description="Create a gamma.app presentation per document, one card per slide.",
        unit_label="Slide",
        steps=(
            Step(kind=WAIT_READY, label="Wait for gamma.app"),
            Step(kind=PAUSE, label="Let the page settle", settle_ms=3000),
            click("Create new", Target(selector='button[data-testid="create-from-ai-button"]')),
            click("Paste in text", Target(selector="button.chakra-button.css-1t1usgb")),
            Step(
                kind=INSERT_CONTENT,
                label="Insert slide 1",
                target=Target(selector='div[contenteditable="true"][data-testid="ai-content-editor"]'),
                value="{first_unit}",
            ),
            click(
                "Preserve this exact text",
                Target(selector='input[type="radio"][value="preserve"]'),
                fallbacks=(Target(text="Preserve this exact text"),),
                settle_ms=1000,
            ),
            Step(kind=VERIFY_CONTENT, label="Check slide 1 text survived"),
            click("Continue", Target(selector="button.chakra-button.css-wnguz0")),
            Step(kind=PAUSE, label="Wait for prompt editor", config_field="prompt_wait_time"),
            click("Generate", Target(selector="button.chakra-button.css-1w21vqj")),
            Step(
                kind=WAIT_FOR_COMPLETION,
                label="Wait for slide 1 generation",
                value="Slide 1 generation",
                proceed_on_timeout=True,
            ),
        ),
        unit_steps=(
            click(
                "Open add card menu",
                Target(selector='button[aria-label="Open add card menu"]'),
                settle_ms=1000,
            ),
            click("Add new with AI", Target(text="Add new with AI")),
            Step(
                kind=INSERT_CONTENT,
                label="Fill card description",
                target=Target(selector="textarea[placeholder=\"Describe what you'd like to make\"]"),
                value="{unit}",
                settle_ms=1000,
            ),
            click(
                "Generate card",
                Target(selector='button.chakra-button.css-1czt23e[aria-label="Generate card"]'),
                require_enabled=True,
                settle_ms=0,
            ),
            Step(
                kind=WAIT_FOR_COMPLETION,
                label="Wait for card generation",
                value="Slide {unit_number} generation",
                proceed_on_timeout=True,
            ),
        ),
        closing_steps=(
            click(
                "Return to dashboard",
                Target(selector='button[aria-label="Home"]'),
                timeout_ms=5000,
                settle_ms=3000,
                optional=True,
            ),
            Step(kind=PAUSE, label="Wait for dashboard grid", settle_ms=4000),
            click(
                "Open newest presentation menu",
                Target(selector=f'{_GRID_ITEM} button[data-dashboard-doc-menu="true"]'),
                timeout_ms=5000,
                optional=True,
                group="dashboard",
            ),
            click(
                "Rename...",
                Target(text="Rename..."),
                timeout_ms=5000,
                settle_ms=1000,
                optional=True,
                group="dashboard",
            ),
            Step(
                kind=INTERACT,
                label="Set new name",
                target=Target(selector='[role="dialog"] input[placeholder]'),
                action="fill",
                value="{base_name}",
                timeout_ms=5000,
                settle_ms=500,
                optional=True,
                group="dashboard",
            ),
            click(
                "Confirm rename",
                Target(text="Rename", exact=True, scope="button"),
                timeout_ms=5000,
                settle_ms=4000,
                optional=True,
                group="dashboard",
            ),
            click("Share...", Target(text="Share..."), optional=True, group="dashboard"),
            click(
                "Export tab",
                Target(selector='button[aria-controls="export"][data-tab="true"]'),
                timeout_ms=5000,
                optional=True,
                group="dashboard",
            ),
            click(
                "Export as PNGs",
                Target(text="Export as PNGs", scope="button"),
                timeout_ms=5000,
                settle_ms=10000,
                optional=True,
                group="dashboard",
            ),
            Step(kind=FINALIZE, label="Finish", value=DOCS_URL),
        ),
    )
