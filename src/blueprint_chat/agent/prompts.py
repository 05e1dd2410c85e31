"""Prompt templates for classification, answering, editing and explaining."""

from __future__ import annotations

from langchain_core.messages import AIMessage, BaseMessage, HumanMessage, SystemMessage
from langchain_core.prompts import ChatPromptTemplate, MessagesPlaceholder

from blueprint_chat.types import ChatMessage

_SECTION_GUIDE = """
The blueprint has 5 sections:
1. industryMarketOverview - Market landscape, pain points, psychological drivers, messaging opportunities
2. icpAnalysisValidation - ICP coherence check, viability, reachability, pain-solution fit, risk assessment
3. offerAnalysisViability - Offer strength scores (1-10), red flags, recommendations
4. competitorAnalysis - Competitor profiles, ad hooks, funnel patterns, gaps and opportunities
5. crossAnalysisSynthesis - Key insights, recommended positioning, messaging angles, platform recommendations, next steps
""".strip()

_CLASSIFIER_SYSTEM_PROMPT = f"""
You are an intent classifier for a Strategic Blueprint document system.

{_SECTION_GUIDE}

Classify the user's message into one of these intents:
- question: User wants information from the blueprint (asking what, who, how many, etc.)
- edit: User wants to change/modify something in the blueprint (update, change, fix, modify)
- explain: User wants to understand WHY something is the way it is (why, reasoning, explain)
- regenerate: User wants to redo/recreate a section with new instructions (redo, regenerate, rewrite)
- general: General conversation, greetings, or unclear intent

Return JSON only with this exact structure:
{{{{
  "type": "question|edit|explain|regenerate|general",
  "topic": "what they're asking about (for question/general)",
  "sections": ["relevant section names"] (for question),
  "section": "specific section name" (for edit/explain/regenerate),
  "field": "specific field path if known" (for edit/explain),
  "desiredChange": "what they want changed" (for edit),
  "whatToExplain": "what needs explanation" (for explain),
  "instructions": "special instructions" (for regenerate)
}}}}

Include only the fields relevant to the classified intent type.
""".strip()

_ANSWER_SYSTEM_PROMPT = f"""
You are an expert assistant for Strategic Blueprint documents.
Your role is to answer questions about the blueprint accurately and helpfully.

{_SECTION_GUIDE}

RULES:
1. Answer using ONLY the provided context - do not make up information
2. If the answer isn't in the context, clearly say "I don't have that information in the blueprint"
3. Be specific and reference actual data from the blueprint
4. If multiple context entries are relevant, synthesize them into a coherent answer
5. Keep answers concise but complete
6. When referencing specific data, mention which section it comes from
7. Do NOT output JSON blocks - respond in plain text
""".strip()

_EDIT_SYSTEM_PROMPT = f"""
You are an expert editor for Strategic Blueprint documents.
Your role is to interpret user edit requests and propose precise field-level changes.

{_SECTION_GUIDE}

RULES:
1. First explain in plain prose what you will change and why
2. Then output exactly ONE fenced JSON block and nothing after it
3. fieldPath uses dot notation (e.g. "recommendedPositioning", "painPoints.primary[0]")
4. newValue MUST match the type of oldValue (string, array, number or object)
5. Be conservative - only change what the user asked for
6. Identify ALL fields that need to change to fulfil the request

JSON BLOCK FORMAT:
```json
{{{{
  "isEdit": true,
  "edits": [
    {{{{
      "section": "sectionName",
      "fieldPath": "path.to.field",
      "oldValue": "current value",
      "newValue": "proposed new value",
      "explanation": "Why this specific change is needed"
    }}}}
  ]
}}}}
```
""".strip()

_EXPLAIN_SYSTEM_PROMPT = f"""
You are an expert explainer for Strategic Blueprint documents.
Your role is to explain WHY certain recommendations, scores, or assessments were made.

{_SECTION_GUIDE}

EXPLANATION APPROACH:
1. Directly answer the "why" question with clear reasoning
2. Reference specific data points from the blueprint as evidence
3. Show how factors from different sections connect and influence each other
4. Be conversational and educational, not just a data dump

CROSS-SECTION CONNECTIONS (examples):
- Industry pain points -> ICP pain-solution fit -> Messaging angles
- Competitor weaknesses -> Competitive gaps -> Positioning recommendations
- Offer strength scores -> Risk assessment -> Strategic recommendations

RESPONSE FORMAT:
You must respond with a valid JSON object:
{{{{
  "explanation": "Clear explanation answering the why question with supporting evidence",
  "relatedFactors": [
    {{{{"section": "sectionName", "factor": "The specific data point", "relevance": "How it influenced the recommendation"}}}}
  ],
  "confidence": "high|medium|low"
}}}}

CONFIDENCE LEVELS:
- high: Multiple data points support the explanation, clear cross-section connections
- medium: Some supporting data, but connections are inferred
- low: Limited data available, explanation is based on general principles
""".strip()

CLASSIFIER_PROMPT = ChatPromptTemplate.from_messages(
    [
        ("system", _CLASSIFIER_SYSTEM_PROMPT),
        ("human", "{message}"),
    ]
)

ANSWER_PROMPT = ChatPromptTemplate.from_messages(
    [
        ("system", _ANSWER_SYSTEM_PROMPT),
        MessagesPlaceholder(variable_name="chat_history", optional=True),
        (
            "human",
            "## Blueprint Context:\n{context}\n\n## Question:\n{message}\n\n"
            "Answer the question based on the blueprint data above.",
        ),
    ]
)

EDIT_PROMPT = ChatPromptTemplate.from_messages(
    [
        ("system", _EDIT_SYSTEM_PROMPT),
        MessagesPlaceholder(variable_name="chat_history", optional=True),
        (
            "human",
            "## Blueprint Context:\n{context}\n\n"
            "## Full Blueprint Data (for edits):\n```json\n{document_json}\n```\n\n"
            "## Edit Request:\nSection: {section}\nField: {field}\n"
            "Desired change: {desired_change}\n\n{message}",
        ),
    ]
)

EXPLAIN_PROMPT = ChatPromptTemplate.from_messages(
    [
        ("system", _EXPLAIN_SYSTEM_PROMPT),
        MessagesPlaceholder(variable_name="chat_history", optional=True),
        (
            "human",
            "## Full Blueprint Data:\n```json\n{document_json}\n```\n\n"
            "## User's Question:\nSection: {section}\nField: {field}\n"
            'What to explain: "{what_to_explain}"\n\n'
            "Analyze the blueprint data and explain WHY this recommendation/assessment was made.\n"
            "Draw connections between sections and cite specific data as evidence.\n"
            "Return ONLY the JSON response with explanation, relatedFactors, and confidence.",
        ),
    ]
)


def history_messages(history: list[ChatMessage] | None, window: int) -> list[BaseMessage]:
    """Most recent `window` turns as LangChain messages; system turns are dropped."""
    if not history or window <= 0:
        return []
    converted: list[BaseMessage] = []
    for message in history[-window:]:
        if message.role == "user":
            converted.append(HumanMessage(content=message.content))
        elif message.role == "assistant":
            converted.append(AIMessage(content=message.content))
    return converted


def render(prompt: ChatPromptTemplate, **values: object) -> list[ChatMessage]:
    """Format a template and convert the result to gateway messages."""
    return [to_chat_message(message) for message in prompt.format_messages(**values)]


def to_chat_message(message: BaseMessage) -> ChatMessage:
    content = message.content if isinstance(message.content, str) else str(message.content)
    if isinstance(message, SystemMessage):
        return ChatMessage(role="system", content=content)
    if isinstance(message, AIMessage):
        return ChatMessage(role="assistant", content=content)
    return ChatMessage(role="user", content=content)
