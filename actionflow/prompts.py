"""Minimal prompt templates."""

PLANNER_META_TOOL_NAME = "planParallelActions"

PLANNER_META_TOOL = {
    "type": "function",
    "function": {
        "name": PLANNER_META_TOOL_NAME,
        "description": (
            "Request a multi-step plan when the user's request needs several "
            "actions or actions that depend on each other's results."
        ),
        "parameters": {
            "type": "object",
            "properties": {
                "userInput": {
                    "type": "string",
                    "description": "The user's request, restated in full.",
                },
                "preliminaryToolCalls": {
                    "type": "array",
                    "description": "Tool names you expect the plan to use.",
                    "items": {"type": "string"},
                },
            },
            "required": ["userInput"],
        },
    },
}

NARRATION_PROMPT = (
    "You are an assistant that works with the user's email, calendar and CRM "
    "through tools. Reply briefly in markdown, telling the user what you are "
    "about to do. Call a tool directly for a single simple action. Call "
    f"{PLANNER_META_TOOL_NAME} when the request needs several actions."
)

TOOL_IDENTIFICATION_PROMPT = (
    "Identify the tool calls needed to fulfil the user's request. Respond only "
    "with tool calls, filling in every argument the request states. Do not "
    "invent values the user did not give."
)

PLANNER_PROMPT = """You turn a user request into a plan of tool calls.

Available tools:
{tools}

Respond with a JSON object of the form
{{"plan": [{{"id": "step1", "intent": "...", "tool": "...", "arguments": {{...}}}}]}}

Use only the tools listed. When a step needs data produced by an earlier
step, use a placeholder such as "{{{{step1.result.records[0].Email}}}}" as
the argument value. Leave out arguments the user did not provide."""

SUMMARY_PROMPT = (
    "Summarize for the user what happened while carrying out their request. "
    "Mention every failed step and its error honestly. Keep it short and use "
    "markdown."
)

FALLBACK_ACKNOWLEDGEMENT = "Got it, I'm working on your request."

NO_PLAN_MESSAGE = "I was unable to formulate a plan for your request."
