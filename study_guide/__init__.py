# Top-level package for the lecture study-guide generator.

# This project implements:
# - Normalized slide text → chunked Step A extraction (cached, resumable)
# - Step A merge + derived exam structures
# - Step B synthesis (plan, outline, pack, validate, rewrite, fallback)
# - Synthesis minimum gate and Step C quality review
# - HTML study-guide rendering with a coverage/QA appendix

# Subpackages:
#     utils/         → Slide parsing, chunking, JSON repair, signals, IO, PDF parsing
#     models/        → LLM client, schemas, prompts, Step A/B/C stages, fallbacks
#     evaluation/    → Validators, manifest, coverage, diagnostics, pipeline
#     visualization/ → HTML renderer
#     experiments/   → Runner scripts
