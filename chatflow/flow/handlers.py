"""
Node handlers - one coroutine per node type.

A handler receives (parsed config, variable scope, execution context) and
returns a NodeTransition. New node types are added by registering a
handler; the engine's stepping loop never changes.
"""
import json
import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict, List, Optional

import httpx

from ..models.execution import ExecutionStatus
from ..models.flow import (
    NodeType,
    ReplyType,
    LoopType,
    ValueType,
    EndType,
    SendTextConfig,
    SendImageConfig,
    SendButtonsConfig,
    SendListConfig,
    WaitForReplyConfig,
    ConditionConfig,
    SetVariableConfig,
    ApiCallConfig,
    DelayConfig,
    LoopConfig,
    EndConfig,
)
from ..services.whatsapp import (
    MAX_BUTTONS,
    MAX_BUTTON_TITLE,
    MAX_LIST_ROWS,
    MAX_LIST_BUTTON_TEXT,
    MAX_ROW_TITLE,
    MAX_ROW_DESCRIPTION,
    MAX_SECTION_TITLE,
)
from .context import ExecutionContext
from .evaluator import ConditionEvaluator
from .result import NodeTransition, ERROR_BRANCH, advance, wait, delay, terminate
from .variables import MISSING, VariableContext, get_nested_value

logger = logging.getLogger(__name__)

NodeHandler = Callable[[Any, Dict[str, Any], ExecutionContext], Awaitable[NodeTransition]]

SUCCESS_BRANCH = "success"
LOOP_BRANCH = "loop"
DONE_BRANCH = "done"

ALLOWED_METHODS = {"GET", "POST", "PUT", "PATCH", "DELETE"}

HANDLERS: Dict[str, NodeHandler] = {}


def register_handler(node_type: NodeType) -> Callable[[NodeHandler], NodeHandler]:
    """Register a coroutine as the handler for node_type"""

    def decorator(func: NodeHandler) -> NodeHandler:
        HANDLERS[node_type.value] = func
        return func

    return decorator


def get_handler(node_type: str) -> Optional[NodeHandler]:
    return HANDLERS.get(node_type)


# ==================== Entry ====================

@register_handler(NodeType.TRIGGER)
async def handle_trigger(config: Any, scope: Dict[str, Any], ctx: ExecutionContext) -> NodeTransition:
    """Entry marker only; stepping starts after it"""
    return advance()


# ==================== Messaging ====================

@register_handler(NodeType.SEND_TEXT)
async def handle_send_text(config: SendTextConfig, scope: Dict[str, Any], ctx: ExecutionContext) -> NodeTransition:
    text = VariableContext(scope).interpolate(config.message)
    if not text or not text.strip():
        logger.warning(f"sendText node {ctx.node_id} has an empty message, skipping send")
        return advance()

    result = await ctx.gateway.send_text(ctx.recipient_id, text)
    ctx.log_delivery("sendText", result)
    return advance()


@register_handler(NodeType.SEND_IMAGE)
async def handle_send_image(config: SendImageConfig, scope: Dict[str, Any], ctx: ExecutionContext) -> NodeTransition:
    variables = VariableContext(scope)
    image_url = variables.interpolate(config.image_url)
    if not image_url:
        logger.warning(f"sendImage node {ctx.node_id} has no image URL, skipping send")
        return advance()

    caption = variables.interpolate(config.caption) or None
    result = await ctx.gateway.send_image(ctx.recipient_id, image_url, caption)
    ctx.log_delivery("sendImage", result)
    return advance()


@register_handler(NodeType.SEND_BUTTONS)
async def handle_send_buttons(config: SendButtonsConfig, scope: Dict[str, Any], ctx: ExecutionContext) -> NodeTransition:
    variables = VariableContext(scope)

    if len(config.buttons) > MAX_BUTTONS:
        logger.warning(
            f"sendButtons node {ctx.node_id} has {len(config.buttons)} buttons, "
            f"sending the first {MAX_BUTTONS}"
        )

    buttons = [
        {"id": button.id, "title": variables.interpolate(button.title)[:MAX_BUTTON_TITLE]}
        for button in config.buttons[:MAX_BUTTONS]
    ]

    result = await ctx.gateway.send_buttons(
        ctx.recipient_id,
        variables.interpolate(config.body_text),
        buttons,
        header_text=variables.interpolate(config.header_text) or None,
        footer_text=variables.interpolate(config.footer_text) or None
    )
    ctx.log_delivery("sendButtons", result)
    return advance()


@register_handler(NodeType.SEND_LIST)
async def handle_send_list(config: SendListConfig, scope: Dict[str, Any], ctx: ExecutionContext) -> NodeTransition:
    variables = VariableContext(scope)

    sections: List[Dict[str, Any]] = []
    for section in config.sections:
        rows = []
        for row in section.rows[:MAX_LIST_ROWS]:
            item = {"id": row.id, "title": variables.interpolate(row.title)[:MAX_ROW_TITLE]}
            if row.description:
                item["description"] = variables.interpolate(row.description)[:MAX_ROW_DESCRIPTION]
            rows.append(item)

        formatted: Dict[str, Any] = {"rows": rows}
        if section.title:
            formatted["title"] = variables.interpolate(section.title)[:MAX_SECTION_TITLE]
        sections.append(formatted)

    result = await ctx.gateway.send_list(
        ctx.recipient_id,
        variables.interpolate(config.body_text),
        variables.interpolate(config.button_text)[:MAX_LIST_BUTTON_TEXT],
        sections,
        header_text=variables.interpolate(config.header_text) or None,
        footer_text=variables.interpolate(config.footer_text) or None
    )
    ctx.log_delivery("sendList", result)
    return advance()


# ==================== Input ====================

@register_handler(NodeType.WAIT_FOR_REPLY)
async def handle_wait_for_reply(config: WaitForReplyConfig, scope: Dict[str, Any], ctx: ExecutionContext) -> NodeTransition:
    return wait(
        variable_name=config.variable_name,
        expected_type=config.expected_type.value,
        timeout_seconds=config.timeout_seconds
    )


def bind_reply(scope: Dict[str, Any], variable_name: str, expected_type: Optional[str], content: Any) -> None:
    """
    Bind inbound content into the variable a waitForReply node named.

    The visible text goes into the variable; the selected button/row id
    goes into `<variable>_id` for button and list replies.
    """
    variable_name = variable_name or "user_input"
    variables = VariableContext(scope)
    variables.set(variable_name, content.text)

    if expected_type == ReplyType.BUTTON.value and content.button_id:
        variables.set(f"{variable_name}_id", content.button_id)
    elif expected_type == ReplyType.LIST.value and content.list_row_id:
        variables.set(f"{variable_name}_id", content.list_row_id)


# ==================== Logic ====================

@register_handler(NodeType.CONDITION)
async def handle_condition(config: ConditionConfig, scope: Dict[str, Any], ctx: ExecutionContext) -> NodeTransition:
    """First true rule (in array order) selects its branch; otherwise the default"""
    for rule in config.conditions:
        if ConditionEvaluator.evaluate_rule(rule, scope):
            logger.debug(f"Condition node {ctx.node_id}: rule on '{rule.variable}' -> {rule.output_handle}")
            return advance(rule.output_handle)

    logger.debug(f"Condition node {ctx.node_id}: no rule matched -> {config.default_handle}")
    return advance(config.default_handle)


@register_handler(NodeType.SET_VARIABLE)
async def handle_set_variable(config: SetVariableConfig, scope: Dict[str, Any], ctx: ExecutionContext) -> NodeTransition:
    variables = VariableContext(scope)

    for assignment in config.assignments:
        if assignment.value_type == ValueType.EXPRESSION:
            value = variables.interpolate("" if assignment.value is None else str(assignment.value))
        elif assignment.value_type == ValueType.FROM_VARIABLE:
            value = variables.get(str(assignment.value or ""))
        else:
            value = assignment.value

        variables.set(assignment.variable_name, value)

    return advance()


@register_handler(NodeType.LOOP)
async def handle_loop(config: LoopConfig, scope: Dict[str, Any], ctx: ExecutionContext) -> NodeTransition:
    """
    Per-node counter kept in ExecutionState.loop_counters.

    Reaching max_iterations forces "done" even when the loop's own
    continuation still holds. The counter is reset on exit so the loop can
    be re-entered later in the same execution.
    """
    node_id = ctx.node_id or ""
    counter = ctx.state.loop_counters.get(node_id, 0)
    variables = VariableContext(scope)

    if counter >= config.max_iterations:
        should_continue = False
    elif config.loop_type == LoopType.WHILE:
        should_continue = config.condition is None or ConditionEvaluator.evaluate_rule(config.condition, scope)
    elif config.loop_type == LoopType.FOREACH:
        items = variables.get(config.collection or "")
        should_continue = isinstance(items, (list, tuple)) and counter < len(items)
        if should_continue:
            variables.set(config.item_variable, items[counter])
            variables.set(f"{config.item_variable}_index", counter)
    else:
        should_continue = True

    if should_continue:
        ctx.state.loop_counters[node_id] = counter + 1
        return advance(LOOP_BRANCH)

    ctx.state.loop_counters.pop(node_id, None)
    logger.debug(f"Loop node {node_id} done after {counter} iterations")
    return advance(DONE_BRANCH)


# ==================== Integration ====================

def _render_body(body: Any, variables: VariableContext) -> Any:
    """Interpolate a body template; JSON strings are decoded after interpolation"""
    if body is None or body == "":
        return None
    if isinstance(body, str):
        rendered = variables.interpolate(body)
        try:
            return json.loads(rendered)
        except ValueError:
            return rendered
    return variables.interpolate_value(body)


def _extract_path(data: Any, json_path: str) -> Any:
    path = (json_path or "").strip()
    if path.startswith("$."):
        path = path[2:]
    elif path == "$":
        return data
    return get_nested_value(data, path)


async def _send_request(
    ctx: ExecutionContext,
    method: str,
    url: str,
    headers: Dict[str, str],
    body: Any,
    timeout: float
) -> httpx.Response:
    kwargs: Dict[str, Any] = {"headers": headers, "timeout": timeout}
    if body is not None and method != "GET":
        if isinstance(body, str):
            kwargs["content"] = body
        else:
            kwargs["json"] = body

    if ctx.http_client is not None:
        return await ctx.http_client.request(method, url, **kwargs)

    async with httpx.AsyncClient() as client:
        return await client.request(method, url, **kwargs)


def _api_error(variables: VariableContext, message: str, status: Optional[int] = None) -> NodeTransition:
    variables.set("api_error", {"message": message, "status": status})
    return advance(ERROR_BRANCH, error=message)


@register_handler(NodeType.API_CALL)
async def handle_api_call(config: ApiCallConfig, scope: Dict[str, Any], ctx: ExecutionContext) -> NodeTransition:
    """
    Issue an HTTP request bounded by the node timeout.

    Success stores {"status", "data"} in `api_response`, applies the
    response mapping and follows "success". Any failure stores `api_error`
    and follows "error"; it never raises.
    """
    variables = VariableContext(scope)
    method = (config.method or "GET").upper()
    url = variables.interpolate(config.url or "")

    if method not in ALLOWED_METHODS:
        return _api_error(variables, f"Unsupported method: {method}")
    if not url:
        return _api_error(variables, "URL not configured")

    headers = {key: str(variables.interpolate(value)) for key, value in config.headers.items()}
    body = _render_body(config.body, variables)
    timeout = ctx.api_timeout_seconds(config.timeout_ms)

    try:
        response = await asyncio.wait_for(
            _send_request(ctx, method, url, headers, body, timeout),
            timeout=timeout
        )
    except (asyncio.TimeoutError, httpx.TimeoutException):
        logger.warning(f"apiCall node {ctx.node_id}: {method} {url} timed out after {timeout}s")
        return _api_error(variables, f"Timeout after {timeout}s")
    except (httpx.HTTPError, httpx.InvalidURL) as e:
        logger.warning(f"apiCall node {ctx.node_id}: {method} {url} failed: {e}")
        return _api_error(variables, str(e))

    logger.info(f"apiCall {method} {url} - Status: {response.status_code}")

    if response.status_code >= 400:
        return _api_error(variables, f"HTTP {response.status_code}", status=response.status_code)

    try:
        data = response.json()
    except ValueError:
        data = response.text

    variables.set("api_response", {"status": response.status_code, "data": data})

    for mapping in config.response_mapping:
        value = _extract_path(data, mapping.json_path)
        if value is MISSING:
            logger.debug(f"apiCall node {ctx.node_id}: '{mapping.json_path}' not in response")
            continue
        variables.set(mapping.variable_name, value)

    return advance(SUCCESS_BRANCH)


# ==================== Control ====================

@register_handler(NodeType.DELAY)
async def handle_delay(config: DelayConfig, scope: Dict[str, Any], ctx: ExecutionContext) -> NodeTransition:
    """Ask the engine for a scheduled continuation; zero seconds continues at once"""
    if config.delay_seconds <= 0:
        return advance()
    return delay(config.delay_seconds)


@register_handler(NodeType.END)
async def handle_end(config: EndConfig, scope: Dict[str, Any], ctx: ExecutionContext) -> NodeTransition:
    if config.message:
        text = VariableContext(scope).interpolate(config.message)
        result = await ctx.gateway.send_text(ctx.recipient_id, text)
        ctx.log_delivery("end", result)

    if config.end_type == EndType.ERROR:
        return terminate(ExecutionStatus.ERRORED, error="end_node")
    return terminate(ExecutionStatus.COMPLETED)
