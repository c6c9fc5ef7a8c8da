"""
Assessment Execution & Grading Engine
assessment/

Components (leaves first):
1. Schemas          — question variants, answer keys, blueprint config, records
2. Evaluator        — pure scoring of one submitted answer against its key
3. Assembler        — sample blueprints from a question pool (count / difficulty / %)
4. Attempts         — attempt lifecycle: start, autosave, lazy expiry, submit
5. Policy           — retry limit, cooldown, availability, result visibility
6. Blueprints       — DRAFT → PUBLISHED → CLOSED lifecycle + assembly orchestration
7. Repository       — storage collaborator interface
8. Events           — AttemptSubmitted fan-out to notification workers
"""
