import json
import re
from datetime import datetime
from pathlib import Path
from typing import Callable, Dict, List, Optional, Sequence, Type

import jinja2

from browserwarden.core.constants import DEFAULT_TEST_FORMAT
from browserwarden.core.logging import log
from browserwarden.recording.models import Action, RecordingMetadata

TEMPLATE_DIR = Path(__file__).parent / "templates"
SELECTOR_ASSERTIONS = {"text", "visible", "enabled"}


def js_string(value: Optional[str]) -> str:
    """Render value as a single-quoted JavaScript string literal."""
    text = "" if value is None else str(value)
    escaped = (
        text.replace("\\", "\\\\")
        .replace("'", "\\'")
        .replace("\n", "\\n")
        .replace("\r", "\\r")
    )
    return f"'{escaped}'"


def _environment() -> jinja2.Environment:
    env = jinja2.Environment(
        loader=jinja2.FileSystemLoader(TEMPLATE_DIR),
        trim_blocks=True,
        lstrip_blocks=True,
        keep_trailing_newline=True,
    )
    env.filters["js"] = js_string
    return env


class Renderer:
    """
    Turns an action sequence into the source of one test file.

    Subclasses supply a template for the file frame and one method per
    action type; assertions dispatch on the assertion kind. Rendering is a
    pure function of its arguments.
    """

    name: str = ""
    template_name: str = ""

    def __init__(self, env: Optional[jinja2.Environment] = None):
        self.env = env or _environment()

    @classmethod
    def filename(cls, test_name: str) -> str:
        return f"{test_name}-{cls.name}.spec.js"

    def render(self, test_name: str, actions: Sequence[Action], metadata: RecordingMetadata) -> str:
        steps = [block for block in (self.statements(a) for a in actions) if block]
        template = self.env.get_template(self.template_name)
        return template.render(
            test_name=test_name,
            steps=steps,
            viewport=metadata.viewport,
            metadata=metadata,
        )

    def statements(self, action: Action) -> List[str]:
        if action.type == "assert":
            if action.assertion is None:
                return []
            if action.assertion.type in SELECTOR_ASSERTIONS and not action.selector:
                log(f"Skipping {action.assertion.type} assertion without selector", level="debug")
                return []
            handler: Callable[[Action], List[str]] = getattr(self, f"assert_{action.assertion.type}")
        else:
            handler = getattr(self, f"on_{action.type}")
        return handler(action)


class PlaywrightRenderer(Renderer):
    name = "playwright"
    template_name = "playwright.spec.js.jinja"

    def on_navigate(self, a: Action) -> List[str]:
        return ["// Navigate to page", f"await page.goto({js_string(a.url)});"]

    def on_click(self, a: Action) -> List[str]:
        return ["// Click element", f"await page.click({js_string(a.selector)});"]

    def on_fill(self, a: Action) -> List[str]:
        return ["// Fill input", f"await page.fill({js_string(a.selector)}, {js_string(a.value)});"]

    def on_select(self, a: Action) -> List[str]:
        return ["// Select option", f"await page.selectOption({js_string(a.selector)}, {js_string(a.value)});"]

    def on_press(self, a: Action) -> List[str]:
        if a.selector:
            return ["// Press key", f"await page.press({js_string(a.selector)}, {js_string(a.value)});"]
        return ["// Press key", f"await page.keyboard.press({js_string(a.value)});"]

    def on_wait(self, a: Action) -> List[str]:
        return ["// Wait for element", f"await page.waitForSelector({js_string(a.selector)});"]

    def assert_text(self, a: Action) -> List[str]:
        return ["// Assert text content",
                f"await expect(page.locator({js_string(a.selector)})).toHaveText({js_string(a.assertion.expected)});"]

    def assert_visible(self, a: Action) -> List[str]:
        return ["// Assert element is visible", f"await expect(page.locator({js_string(a.selector)})).toBeVisible();"]

    def assert_enabled(self, a: Action) -> List[str]:
        return ["// Assert element is enabled", f"await expect(page.locator({js_string(a.selector)})).toBeEnabled();"]

    def assert_url(self, a: Action) -> List[str]:
        return ["// Assert URL", f"await expect(page).toHaveURL({js_string(a.assertion.expected)});"]

    def assert_title(self, a: Action) -> List[str]:
        return ["// Assert page title", f"await expect(page).toHaveTitle({js_string(a.assertion.expected)});"]


class JestRenderer(Renderer):
    """Jest + Puppeteer."""

    name = "jest"
    template_name = "jest.spec.js.jinja"

    def on_navigate(self, a: Action) -> List[str]:
        return [f"await page.goto({js_string(a.url)});"]

    def on_click(self, a: Action) -> List[str]:
        return [f"await page.click({js_string(a.selector)});"]

    def on_fill(self, a: Action) -> List[str]:
        return [f"await page.type({js_string(a.selector)}, {js_string(a.value)});"]

    def on_select(self, a: Action) -> List[str]:
        return [f"await page.select({js_string(a.selector)}, {js_string(a.value)});"]

    def on_press(self, a: Action) -> List[str]:
        if a.selector:
            return [f"await page.focus({js_string(a.selector)});",
                    f"await page.keyboard.press({js_string(a.value)});"]
        return [f"await page.keyboard.press({js_string(a.value)});"]

    def on_wait(self, a: Action) -> List[str]:
        return [f"await page.waitForSelector({js_string(a.selector)});"]

    def assert_text(self, a: Action) -> List[str]:
        return [f"expect(await page.$eval({js_string(a.selector)}, el => el.textContent.trim()))"
                f".toBe({js_string(a.assertion.expected)});"]

    def assert_visible(self, a: Action) -> List[str]:
        return [f"await expect(page.waitForSelector({js_string(a.selector)}, {{ visible: true }}))"
                ".resolves.toBeTruthy();"]

    def assert_enabled(self, a: Action) -> List[str]:
        return [f"expect(await page.$eval({js_string(a.selector)}, el => !el.disabled)).toBe(true);"]

    def assert_url(self, a: Action) -> List[str]:
        return [f"expect(page.url()).toBe({js_string(a.assertion.expected)});"]

    def assert_title(self, a: Action) -> List[str]:
        return [f"expect(await page.title()).toBe({js_string(a.assertion.expected)});"]


def selenium_key(key: str) -> str:
    """Map a Playwright key name such as 'ArrowDown' to Key.ARROW_DOWN."""
    if len(key) == 1:
        return js_string(key)
    return "Key." + re.sub(r"(?<!^)(?=[A-Z])", "_", key).upper()


class MochaRenderer(Renderer):
    """Mocha + selenium-webdriver."""

    name = "mocha"
    template_name = "mocha.spec.js.jinja"

    @staticmethod
    def _find(selector: Optional[str]) -> str:
        return f"driver.findElement(By.css({js_string(selector)}))"

    def on_navigate(self, a: Action) -> List[str]:
        return [f"await driver.get({js_string(a.url)});"]

    def on_click(self, a: Action) -> List[str]:
        return [f"await {self._find(a.selector)}.click();"]

    def on_fill(self, a: Action) -> List[str]:
        return [f"await {self._find(a.selector)}.sendKeys({js_string(a.value)});"]

    def on_select(self, a: Action) -> List[str]:
        option = f"{a.selector} option[value={json.dumps(a.value or '')}]"
        return [f"await {self._find(option)}.click();"]

    def on_press(self, a: Action) -> List[str]:
        key = selenium_key(a.value or "")
        if a.selector:
            return [f"await {self._find(a.selector)}.sendKeys({key});"]
        return [f"await driver.actions().sendKeys({key}).perform();"]

    def on_wait(self, a: Action) -> List[str]:
        return [f"await driver.wait(until.elementLocated(By.css({js_string(a.selector)})));"]

    def assert_text(self, a: Action) -> List[str]:
        return [f"assert.strictEqual(await {self._find(a.selector)}.getText(), {js_string(a.assertion.expected)});"]

    def assert_visible(self, a: Action) -> List[str]:
        return [f"assert(await {self._find(a.selector)}.isDisplayed());"]

    def assert_enabled(self, a: Action) -> List[str]:
        return [f"assert(await {self._find(a.selector)}.isEnabled());"]

    def assert_url(self, a: Action) -> List[str]:
        return [f"assert.strictEqual(await driver.getCurrentUrl(), {js_string(a.assertion.expected)});"]

    def assert_title(self, a: Action) -> List[str]:
        return [f"assert.strictEqual(await driver.getTitle(), {js_string(a.assertion.expected)});"]


RENDERERS: Dict[str, Type[Renderer]] = {
    PlaywrightRenderer.name: PlaywrightRenderer,
    JestRenderer.name: JestRenderer,
    MochaRenderer.name: MochaRenderer,
}


def get_renderer(fmt: Optional[str] = None) -> Renderer:
    """Renderer for fmt; unknown formats fall back to Playwright."""
    fmt = fmt or DEFAULT_TEST_FORMAT
    cls = RENDERERS.get(fmt)
    if cls is None:
        log(f"Unknown test format '{fmt}', using {DEFAULT_TEST_FORMAT}", level="warning")
        cls = RENDERERS[DEFAULT_TEST_FORMAT]
    return cls()


def render_suite(suite_name: str, scripts: Sequence[str], fmt: str,
                 env: Optional[jinja2.Environment] = None) -> str:
    template = (env or _environment()).get_template("suite.spec.js.jinja")
    return template.render(
        suite_name=suite_name,
        scripts=scripts,
        format=fmt,
        generated_at=datetime.now().isoformat(),
    )
