"""
Page helpers - small Runtime/Input/Page wrappers used by publishing adapters.

Values are handed to page scripts as protocol call arguments, never spliced
into script source.
"""
from typing import Any, Optional

from multipost.cdp.session import Session
from multipost.core.errors import CDPProtocolError

CLICK_ELEMENT_JS = """function (selector) {
    const el = document.querySelector(selector);
    if (!el) return false;
    el.click();
    return true;
}"""


def _raise_for_exception(result: dict, session: Session, method: str):
    details = result.get("exceptionDetails")
    if not details:
        return
    exception = details.get("exception") or {}
    message = exception.get("description") or details.get("text") or "Script exception"
    raise CDPProtocolError(
        message,
        cdp_error=details,
        session_id=session.session_id,
        target_id=session.target_id,
        method=method,
    )


async def evaluate(session: Session, expression: str, await_promise: bool = False) -> Any:
    """Evaluate ``expression`` in the page and return its value."""
    result = await session.send("Runtime.evaluate", {
        "expression": expression,
        "returnByValue": True,
        "awaitPromise": await_promise,
    })
    _raise_for_exception(result, session, "Runtime.evaluate")
    return result.get("result", {}).get("value")


async def call_function(session: Session, declaration: str, *args: Any,
                        await_promise: bool = False) -> Any:
    """Call a JavaScript function in the page with ``args`` passed by value."""
    global_object = await session.send("Runtime.evaluate", {"expression": "globalThis"})
    object_id = global_object.get("result", {}).get("objectId")

    result = await session.send("Runtime.callFunctionOn", {
        "functionDeclaration": declaration,
        "objectId": object_id,
        "arguments": [{"value": arg} for arg in args],
        "returnByValue": True,
        "awaitPromise": await_promise,
    })
    _raise_for_exception(result, session, "Runtime.callFunctionOn")
    return result.get("result", {}).get("value")


async def click_element(session: Session, selector: str) -> bool:
    """Click the first element matching ``selector``. Returns False if none."""
    return bool(await call_function(session, CLICK_ELEMENT_JS, selector))


async def insert_text(session: Session, text: str):
    """Type ``text`` into the focused element."""
    await session.send("Input.insertText", {"text": text})


async def navigate(session: Session, url: str, timeout: Optional[float] = None) -> str:
    """Navigate the page and return the new frame id."""
    result = await session.send("Page.navigate", {"url": url}, timeout=timeout)
    error_text = result.get("errorText")
    if error_text:
        raise CDPProtocolError(
            error_text,
            session_id=session.session_id,
            target_id=session.target_id,
            method="Page.navigate",
        )
    return result.get("frameId", "")
