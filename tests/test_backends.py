"""Tests for the HTTP backends, driven through httpx.MockTransport."""

import asyncio
import json

import httpx
import pytest

from review_assistant.backends.clinicaltrials import ClinicalTrialsClient
from review_assistant.backends.llm import LLMClient, LLMResponse, parse_json_response
from review_assistant.backends.pubmed import PubMedClient, parse_articles_xml
from review_assistant.backends.scraper import HttpPageScraper, extract_readable_text
from review_assistant.backends.websearch import (
    DisabledWebSearch,
    GoogleWebSearch,
    TavilyWebSearch,
    build_web_search,
)
from review_assistant.config import Settings
from review_assistant.errors import (
    AuthenticationError,
    ConfigurationError,
    MalformedResponseError,
    ProviderError,
    ScrapeError,
)

EFETCH_XML = """<?xml version="1.0" ?>
<PubmedArticleSet>
  <PubmedArticle>
    <MedlineCitation>
      <PMID Version="1">111</PMID>
      <Article>
        <ArticleTitle>Gut flora in <i>autism</i></ArticleTitle>
        <Abstract>
          <AbstractText Label="BACKGROUND">Little is known.</AbstractText>
          <AbstractText Label="RESULTS">Flora differs.</AbstractText>
        </Abstract>
      </Article>
    </MedlineCitation>
  </PubmedArticle>
  <PubmedArticle>
    <MedlineCitation>
      <PMID Version="1">222</PMID>
      <Article>
        <ArticleTitle>No abstract here</ArticleTitle>
      </Article>
    </MedlineCitation>
  </PubmedArticle>
  <PubmedArticle>
    <MedlineCitation>
      <Article><ArticleTitle>Missing PMID</ArticleTitle></Article>
    </MedlineCitation>
  </PubmedArticle>
</PubmedArticleSet>
"""


def mock_client(handler) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


# --- PubMed ---

def test_parse_articles_xml():
    articles = parse_articles_xml(EFETCH_XML)

    assert [a.pmid for a in articles] == ["111", "222"]
    assert articles[0].title == "Gut flora in autism"
    assert articles[0].abstract == "BACKGROUND: Little is known. RESULTS: Flora differs."
    assert articles[0].url == "https://pubmed.ncbi.nlm.nih.gov/111/"
    assert articles[1].abstract == "No abstract available."


@pytest.mark.parametrize("xml", ["<not-closed>", "<eSearchResult></eSearchResult>"])
def test_parse_articles_xml_rejects_bad_documents(xml):
    with pytest.raises(ProviderError):
        parse_articles_xml(xml)


def test_pubmed_search_is_two_phase():
    seen = []

    def handler(request):
        seen.append(request.url)
        if request.url.path.endswith("esearch.fcgi"):
            return httpx.Response(200, json={"esearchresult": {"idlist": ["222", "111"]}})
        return httpx.Response(200, text=EFETCH_XML)

    client = PubMedClient(api_key="k", http_client=mock_client(handler))
    articles = asyncio.run(client.search("autism", limit=50))

    assert [a.pmid for a in articles] == ["222", "111"]
    assert seen[0].params["retmax"] == "50"
    assert seen[0].params["api_key"] == "k"
    assert seen[1].params["id"] == "222,111"
    assert client.throttled is False
    assert PubMedClient().throttled is True


def test_pubmed_http_error():
    client = PubMedClient(http_client=mock_client(lambda r: httpx.Response(500)))

    with pytest.raises(ProviderError) as exc:
        asyncio.run(client.search_ids("autism"))
    assert exc.value.status_code == 500


def test_pubmed_empty_search_skips_fetch():
    calls = []

    def handler(request):
        calls.append(request.url.path)
        return httpx.Response(200, json={"esearchresult": {"idlist": []}})

    client = PubMedClient(http_client=mock_client(handler))
    assert asyncio.run(client.search("nothing")) == []
    assert len(calls) == 1


# --- ClinicalTrials.gov ---

def test_clinical_trials_search():
    body = {"studies": [
        {"protocolSection": {
            "identificationModule": {"nctId": "NCT01", "briefTitle": "Probiotics in ASD"},
            "statusModule": {"overallStatus": "COMPLETED"},
            "descriptionModule": {"briefSummary": "A trial."},
            "conditionsModule": {"conditions": ["Autism"]},
            "armsAndInterventionsModule": {"interventions": [{"name": "Probiotic"}, {"type": "OTHER"}]},
        }},
        {"protocolSection": {"identificationModule": {"briefTitle": "no id"}}},
    ]}
    seen = []

    def handler(request):
        seen.append(request.url)
        return httpx.Response(200, json=body)

    client = ClinicalTrialsClient(http_client=mock_client(handler))
    trials = asyncio.run(client.search("autism AND probiotics", limit=20))

    assert len(trials) == 1
    t = trials[0]
    assert (t.nct_id, t.title, t.status, t.summary) == ("NCT01", "Probiotics in ASD", "COMPLETED", "A trial.")
    assert t.conditions == ["Autism"]
    assert t.interventions == ["Probiotic"]
    assert t.url == "https://clinicaltrials.gov/study/NCT01"
    assert seen[0].params["pageSize"] == "20"
    assert seen[0].params["query.term"] == "autism AND probiotics"


def test_clinical_trials_error():
    client = ClinicalTrialsClient(http_client=mock_client(lambda r: httpx.Response(503)))
    with pytest.raises(ProviderError):
        asyncio.run(client.search("x"))


# --- Web search ---

def test_tavily_search():
    def handler(request):
        payload = json.loads(request.content)
        assert payload["query"] == "gut autism"
        return httpx.Response(200, json={"results": [
            {"url": "https://a.org", "title": "A", "content": "about a"},
            {"title": "no url"},
        ]})

    results = asyncio.run(TavilyWebSearch("key", http_client=mock_client(handler)).search("gut autism"))

    assert [(r.url, r.title, r.snippet) for r in results] == [("https://a.org", "A", "about a")]


def test_google_search_without_items():
    client = GoogleWebSearch("key", "cse", http_client=mock_client(lambda r: httpx.Response(200, json={})))
    assert asyncio.run(client.search("q")) == []


def test_web_search_error_message():
    handler = lambda r: httpx.Response(403, json={"error": {"message": "quota exceeded"}})
    client = GoogleWebSearch("key", "cse", http_client=mock_client(handler))

    with pytest.raises(ProviderError) as exc:
        asyncio.run(client.search("q"))
    assert "quota exceeded" in str(exc.value)


def test_build_web_search():
    assert isinstance(build_web_search(Settings(web_search_provider="none")), DisabledWebSearch)
    assert isinstance(build_web_search(Settings(web_search_provider="tavily", tavily_api_key="k")), TavilyWebSearch)

    with pytest.raises(ConfigurationError):
        build_web_search(Settings(web_search_provider="tavily"))
    with pytest.raises(ConfigurationError):
        build_web_search(Settings(web_search_provider="google", google_api_key="k"))
    with pytest.raises(ConfigurationError):
        build_web_search(Settings(web_search_provider="bing"))


def test_disabled_web_search_returns_nothing():
    assert asyncio.run(DisabledWebSearch().search("anything")) == []


# --- Scraper ---

PAGE = """<html><head><script>var x = 1;</script></head>
<body><nav>Menu Home About</nav>
<article><h1>Title</h1><p>{body}</p></article>
<footer>Copyright</footer></body></html>"""


def test_extract_readable_text_prefers_article():
    text = extract_readable_text(PAGE.format(body="Findings were significant."))
    assert text == "Title Findings were significant."


def test_scraper_rejects_stub_pages():
    client = mock_client(lambda r: httpx.Response(200, text=PAGE.format(body="Subscribe to read.")))
    with pytest.raises(ScrapeError):
        asyncio.run(HttpPageScraper(http_client=client).scrape("https://journal.example/1"))


def test_scraper_returns_article_text():
    body = "Results. " * 50
    client = mock_client(lambda r: httpx.Response(200, text=PAGE.format(body=body)))
    text = asyncio.run(HttpPageScraper(http_client=client).scrape("https://journal.example/1"))
    assert text.startswith("Title Results.")
    assert "Copyright" not in text


# --- LLM client ---

def llm_settings(provider, **kwargs):
    return Settings(llm_provider=provider, llm_api_key="secret", **kwargs)


def test_llm_requires_key():
    with pytest.raises(ConfigurationError):
        LLMClient(Settings(llm_provider="openai"))


def test_llm_unknown_provider():
    with pytest.raises(ConfigurationError):
        LLMClient(llm_settings("mistral"))


def test_anthropic_call_uses_fast_and_smart_models():
    seen = []

    def handler(request):
        seen.append(json.loads(request.content))
        assert request.headers["x-api-key"] == "secret"
        return httpx.Response(200, json={"content": [{"type": "text", "text": "hello"}]})

    client = LLMClient(llm_settings("anthropic", fast_model="fast", smart_model="smart"), http_client=mock_client(handler))
    fast = asyncio.run(client.generate("p", response_format={"type": "json_object"}))
    smart = asyncio.run(client.generate("p", smart=True))

    assert fast.content == "hello" and fast.model == "fast"
    assert smart.model == "smart"
    assert seen[0]["model"] == "fast" and "system" in seen[0]
    assert seen[1]["model"] == "smart" and "system" not in seen[1]


def test_openai_call():
    def handler(request):
        assert request.url.path == "/v1/chat/completions"
        assert request.headers["authorization"] == "Bearer secret"
        assert json.loads(request.content)["response_format"] == {"type": "json_object"}
        return httpx.Response(200, json={"choices": [{"message": {"content": "{}"}}]})

    client = LLMClient(llm_settings("openai"), http_client=mock_client(handler))
    assert asyncio.run(client.generate("p", response_format={"type": "json_object"})).content == "{}"


def test_gemini_call_and_custom_endpoint():
    def handler(request):
        assert request.url.host == "proxy.local"
        assert request.url.path == "/v1beta/models/gemini-1.5-flash:generateContent"
        assert request.url.params["key"] == "secret"
        return httpx.Response(200, json={"candidates": [{"content": {"parts": [{"text": "a"}, {"text": "b"}]}}]})

    settings = llm_settings("gemini", llm_api_endpoint="https://proxy.local/v1beta/")
    client = LLMClient(settings, http_client=mock_client(handler))
    assert asyncio.run(client.generate("p")).content == "ab"


def test_gemini_blocked_prompt():
    handler = lambda r: httpx.Response(200, json={"candidates": [], "promptFeedback": {"blockReason": "SAFETY"}})
    client = LLMClient(llm_settings("gemini"), http_client=mock_client(handler))

    with pytest.raises(ProviderError) as exc:
        asyncio.run(client.generate("p"))
    assert "SAFETY" in str(exc.value)


@pytest.mark.parametrize("status,error", [(401, AuthenticationError), (403, AuthenticationError), (429, ProviderError)])
def test_llm_http_errors(status, error):
    handler = lambda r: httpx.Response(status, json={"error": {"message": "nope"}})
    client = LLMClient(llm_settings("openai"), http_client=mock_client(handler))

    with pytest.raises(error) as exc:
        asyncio.run(client.generate("p"))
    assert exc.value.status_code == status
    assert "nope" in str(exc.value)


def test_llm_network_error():
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    client = LLMClient(llm_settings("openai"), http_client=mock_client(handler))
    with pytest.raises(ProviderError):
        asyncio.run(client.generate("p"))


def test_parse_json_response():
    assert parse_json_response(LLMResponse('```json\n{"a": 1}\n```')) == {"a": 1}
    assert parse_json_response(LLMResponse(' [1, 2] ')) == [1, 2]
    with pytest.raises(MalformedResponseError):
        parse_json_response(LLMResponse("{oops"))


# --- Unexpected response bodies ---

@pytest.mark.parametrize("provider,response", [
    ("openai", httpx.Response(200, text="<html>proxy page</html>")),
    ("openai", httpx.Response(200, json={"choices": [{}]})),
    ("openai", httpx.Response(200, json=["not", "an", "object"])),
    ("anthropic", httpx.Response(200, json={"content": ["text"]})),
    ("gemini", httpx.Response(200, json={"candidates": [{"content": {"parts": [{"text": 1}]}}]})),
])
def test_llm_unexpected_body_is_a_provider_error(provider, response):
    client = LLMClient(llm_settings(provider), http_client=mock_client(lambda r: response))

    with pytest.raises(ProviderError):
        asyncio.run(client.generate("p"))


@pytest.mark.parametrize("body", [{"results": ["https://a.org"]}, {"results": [{"url": "https://a.org", "title": None}]}, ["x"]])
def test_tavily_unexpected_body_is_a_provider_error(body):
    client = TavilyWebSearch("key", http_client=mock_client(lambda r: httpx.Response(200, json=body)))

    with pytest.raises(ProviderError):
        asyncio.run(client.search("q"))


def test_web_search_error_with_list_body():
    client = GoogleWebSearch("key", "cse", http_client=mock_client(lambda r: httpx.Response(500, json=["boom"])))

    with pytest.raises(ProviderError) as exc:
        asyncio.run(client.search("q"))
    assert exc.value.status_code == 500


def test_pubmed_unexpected_esearch_body():
    client = PubMedClient(http_client=mock_client(lambda r: httpx.Response(200, json=["1001"])))

    with pytest.raises(ProviderError):
        asyncio.run(client.search_ids("autism"))


def test_clinical_trials_unexpected_study_record():
    body = {"studies": ["NCT01"]}
    client = ClinicalTrialsClient(http_client=mock_client(lambda r: httpx.Response(200, json=body)))

    with pytest.raises(ProviderError):
        asyncio.run(client.search("x"))
