"""
The fixed tool used to force structured answers.
"""

from ..models import STRUCTURED_ANSWER_TOOL, ToolDescriptor

STRUCTURED_ANSWER_DESCRIPTOR = ToolDescriptor(
    name=STRUCTURED_ANSWER_TOOL,
    description=(
        "Always answer through this tool. Put your reply to the user in 'response' and set "
        "'isFinished' to true only when the conversation has reached its goal."
    ),
    input_schema={
        "type": "object",
        "properties": {
            "response": {"type": "string", "description": "Answer shown to the user"},
            "isFinished": {"type": "boolean", "description": "True when nothing more is needed"},
        },
        "required": ["response", "isFinished"],
    },
)
