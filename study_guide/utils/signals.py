from typing import Dict, List, Tuple
import re

import numpy as np
from sklearn.feature_extraction.text import TfidfVectorizer

from study_guide.models.schemas import SlideExtract, StepAOutput


# (headings, facts) text pair per extracted slide
def extract_sections(slides: List[SlideExtract]) -> List[Tuple[str, str]]:
    out = []
    for s in slides:
        title = " ".join(sec.heading for sec in s.sections if sec.heading.strip())
        content = "\n".join(f.text for sec in s.sections for f in sec.facts)
        out.append((title, content))
    return out


# Get top TF-IDF keywords
def top_keywords_per_section(sections: List[Tuple[str, str]], k: int = 5) -> List[List[str]]:
    docs = [t + "\n" + c for (t, c) in sections]
    if len(docs) == 0:
        return []

    vec = TfidfVectorizer(stop_words="english", max_features=5000)
    try:
        X = vec.fit_transform(docs)
    except ValueError:
        # Only stop words or empty text
        return [[] for _ in docs]
    terms = np.array(vec.get_feature_names_out())

    top_terms = []
    for i in range(X.shape[0]):
        row = X.getrow(i)
        if row.nnz == 0:
            top_terms.append([])
            continue
        weights = row.toarray()[0]
        idx = [j for j in np.argsort(weights)[-k:][::-1] if weights[j] > 0]
        top_terms.append([t for t in terms[idx] if t])
    return top_terms


# Share of slides with at least one top keyword present in the text
def keyword_coverage_pct(sections: List[Tuple[str, str]], text: str, k: int = 5) -> float:

    topk = top_keywords_per_section(sections, k=k)
    scored = [kws for kws in topk if kws]
    if not scored:
        return 0.0

    text_lc = text.lower()
    covered = sum(1 for kws in scored if any(kw in text_lc for kw in kws))
    return round(100.0 * covered / len(scored), 1)


# Build glossary from headings, ALLCAPS and abbreviations
def build_glossary(sections: List[Tuple[str, str]]) -> List[str]:
    terms = set()

    for (title, content) in sections:

        # Heading tokens
        for tok in re.findall(r"[A-Za-z][A-Za-z0-9\-]{2,}", title):
            if tok.lower() != "general":
                terms.add(tok.lower())

        # ALLCAPS
        for cap in re.findall(r"\b[A-Z]{3,}\b", content):
            terms.add(cap.lower())

    return sorted(terms)


# Deduplicated entity sets across the lecture
def global_entities(step_a: StepAOutput, limit: int = 25) -> Dict[str, List[str]]:

    def _top(items: List[str]) -> List[str]:
        seen, out = set(), []
        for item in items:
            key = item.strip().lower()
            if key and key not in seen:
                seen.add(key)
                out.append(item.strip())
        return out[:limit]

    tagged: Dict[str, List[str]] = {}
    for slide in step_a.slides:
        for sec in slide.sections:
            for fact in sec.facts:
                for tag in fact.tags:
                    tagged.setdefault(tag, []).append(fact.text)

    return {
        "diseases": _top(step_a.buckets.dx + tagged.get("disease", [])),
        "treatments": _top(step_a.buckets.treatment + tagged.get("treatment", [])),
        "labs": _top(step_a.buckets.labs + tagged.get("lab", [])),
        "buzzwords": _top(step_a.buckets.buzzwords + tagged.get("buzz", [])),
        "abbreviations": _top(list(step_a.abbrev_map.keys())),
        "glossary_terms": build_glossary(extract_sections(step_a.slides))[:limit],
    }
