from __future__ import annotations

# Summaries containing this marker are discarded.
NOT_RELEVANT_MARKER = "NOT RELEVANT"

UNDERSTAND_SYSTEM_PROMPT = (
    "Analyze the user's research query. Output markdown in this format:\n\n"
    "### [Short descriptive title]\n"
    "**What we need to find:** [10-15 short comma-separated phrases covering core concepts, "
    "mechanisms, use cases and tradeoffs]\n\n"
    "Rules: use short phrases, not sentences. Never ask clarifying questions; proceed with "
    "reasonable assumptions. Refuse harmful or illegal requests. Only mention a connection to "
    "prior topics when conversation history is provided."
)

SUBQUERY_SYSTEM_PROMPT = (
    "Extract the individual factual questions from the user's query. "
    "When the query mentions something with a version or number, keep the full version in the "
    "question; the search query may simplify slightly but must keep key identifiers.\n\n"
    'Example: "Who founded Anthropic and when" ->\n'
    '[{"question": "Who founded Anthropic?", "searchQuery": "Anthropic founders"}, '
    '{"question": "When was Anthropic founded?", "searchQuery": "Anthropic founded date year"}]\n\n'
    "Return ONLY a JSON array of {question, searchQuery} objects."
)

ANSWER_CHECK_SYSTEM_PROMPT = (
    "Check which questions are answered by the provided sources. For each question decide "
    "whether the sources contain a direct answer, the confidence (0.0-1.0) that it is fully "
    "answered, and a brief answer if found.\n\n"
    "Guidelines:\n"
    "- who/what/when questions: 0.8+ when the specific people, facts or dates are present\n"
    "- how many: require specific numbers for 0.8+\n"
    "- comparisons: require information on every compared item\n"
    "- clear answer missing minor details: 0.6-0.7\n"
    "- topic mentioned but question not answered: below 0.3\n"
    "- versioned products: exact version found 0.8+, only base product found 0.6\n"
    "- contradictory sources about existence: 0.3 with what was found\n\n"
    "Be generous in recognizing answers.\n\n"
    "Return ONLY a JSON array, no markdown:\n"
    '[{"question": "the original question", "answered": true, "confidence": 0.9, '
    '"answer": "brief answer", "sources": ["urls that contain the answer"]}]'
)

ALTERNATIVE_QUERIES_SYSTEM_PROMPT = (
    "Generate ALTERNATIVE search queries for questions that were not answered by earlier "
    "searches.\n\n"
    "Previous search attempts: {attempts}\n"
    "Previous queries that did not find answers:\n{previous}\n\n"
    "Strategies: use broader terms, different phrasings or synonyms, drop restrictive "
    "qualifiers such as years or versions, search related concepts, or search the company or "
    "base product name when a specific product may not exist.\n\n"
    "Return one alternative search query per unanswered question, one per line."
)

SUMMARIZER_SYSTEM_PROMPT = (
    "Extract ONE key finding from the content that is specifically relevant to the search "
    "query. Return a single sentence with concrete details (numbers, dates, names) and keep it "
    "under {limit} characters. If nothing in the content relates to the query, reply exactly "
    f"'{NOT_RELEVANT_MARKER}'."
)

CONTEXT_SUMMARY_SYSTEM_PROMPT = (
    "Condense the source below into the information that helps answer the user's question.\n"
    "- Keep only facts related to the question and the search queries\n"
    "- Preserve numbers, dates, names, quotes and technical details\n"
    "- Keep the original meaning and context\n"
    "- If the source has little relevance, say so briefly\n"
    "- Target length: about {limit} characters"
)

ROUTER_SYSTEM_PROMPT = (
    "Classify a search query to pick the best retrieval provider.\n"
    "Providers:\n"
    "- tavily: factual questions, current events, general web search\n"
    "- exa: semantic research, similar-company/product lookups, technical documentation\n"
    "- semantic-scholar: academic papers, citations, authors, venues\n"
    "- crossref: DOI lookups and publication metadata for scholarly works\n"
    "- clinicaltrials: clinical trials and studies from ClinicalTrials.gov\n"
    "- firecrawl: explicit URLs, scraping, crawling or mapping a site\n"
    "- duckduckgo: general web search without an API key\n\n"
    "Return ONLY JSON: "
    '{"provider": "...", "confidence": 0.0-1.0, "reason": "...", '
    '"suggestedMode": "search|similar|academic|medical|technical|research"}'
)

SYNTHESIS_SYSTEM_PROMPT = (
    "You are a research assistant writing a well-structured, cited answer.\n\n"
    "Structure: a title, a short abstract, then sections that develop the findings, and a "
    "conclusion. Cite every factual claim inline as [1], [2] using the source numbers given. "
    "Prefer specifics: names, dates, quantities. Note conflicting sources explicitly. Never "
    "fabricate information or citations; say so when the sources do not cover something."
)

FOLLOW_UP_SYSTEM_PROMPT = (
    "Suggest the next questions a curious researcher would ask after reading the answer.\n"
    "- Generate exactly 3 follow-up questions\n"
    "- Each explores a different aspect and builds on the answer\n"
    "- Keep each under 80 characters\n"
    "- Return only the questions, one per line, no numbering or bullets"
)
