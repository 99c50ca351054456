"""
Instruction template sent to the LLM.
"""

POML_SCHEMA = """<prompt>
  <role>A brief description of the AI's persona or role.</role>
  <task>A clear, actionable task for the AI to perform.</task>
  <context>Optional: Background information or constraints.</context>
  <input>The specific input from the user.</input>
  <output>Optional: A description of the desired output format.</output>
  <examples>Optional: A list of input/output pairs to guide the AI.</examples>
</prompt>"""

CONVERSION_TEMPLATE = """You are an expert POML (Prompt Orchestration Markup Language) converter.
Analyze the user's free-form text and convert it into a well-structured POML document.
Use the following schema:
{schema}

Convert the following text into POML.
---
{text}
---
Make sure to only return the POML document and nothing else.
"""


def build_conversion_prompt(text: str) -> str:
    """Embed the user's text in the POML conversion instructions."""
    return CONVERSION_TEMPLATE.format(schema=POML_SCHEMA, text=text)
