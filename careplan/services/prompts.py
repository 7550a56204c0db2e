"""
Prompt construction for session analysis.

The model receives the current plan (if any) plus patient history and must
return the FULL proposed plan content, changed only where the session warrants.
PHI: every string built here contains clinical data - NEVER log.
"""
import json
from dataclasses import dataclass, field
from typing import Optional

from careplan.schemas.plan_content import PlanContent


MODALITY_INTERVENTIONS = {
    "CBT": "Cognitive Restructuring, Behavioral Activation, Exposure Therapy, Thought Records, "
           "Socratic Questioning, Activity Scheduling",
    "DBT": "Mindfulness Skills, Distress Tolerance (TIPP, ACCEPTS), Emotion Regulation, "
           "Interpersonal Effectiveness (DEAR MAN, GIVE, FAST), Diary Cards",
    "ACT": "Acceptance Exercises, Cognitive Defusion, Values Clarification, Committed Action, "
           "Self-as-Context, Present Moment Awareness",
    "Psychodynamic": "Free Association, Transference Analysis, Dream Interpretation, "
                     "Exploring Defense Mechanisms, Working Through, Interpretation",
    "EMDR": "Bilateral Stimulation, Target Identification, Desensitization, Installation, "
            "Body Scan, Future Template",
    "MI": "Open-Ended Questions, Affirmations, Reflective Listening, Summarizing, "
          "Developing Discrepancy, Rolling with Resistance",
    "Integrative": "Psychoeducation, Active Listening, Coping Skills Training, Mindfulness, "
                   "Cognitive Techniques, Behavioral Strategies",
}

NEW_PATIENT_PERSONA = (
    "This is an intake or early session with a new client. No prior plan or session "
    "history exists. Create initial treatment recommendations."
)


@dataclass
class PatientContext:
    """History gathered for an existing patient."""
    recent_session_summaries: list[str] = field(default_factory=list)
    prior_transcript_excerpt: Optional[str] = None

    @property
    def has_history(self) -> bool:
        return bool(self.recent_session_summaries or self.prior_transcript_excerpt)


def modality_interventions(modality: str) -> str:
    return MODALITY_INTERVENTIONS.get(modality, MODALITY_INTERVENTIONS["Integrative"])


def transcript_tail(transcript: Optional[str], max_chars: int) -> Optional[str]:
    """Last max_chars characters of a transcript, or None if there is nothing to show."""
    if not transcript or not transcript.strip() or max_chars <= 0:
        return None
    text = transcript.strip()
    if len(text) <= max_chars:
        return text
    return "..." + text[-max_chars:]


_OUTPUT_CONTRACT = """{
  "sessionSummary": "2-3 sentence summary of the session",
  "progressNotes": "Clinical progress notes (SOAP format preferred)",
  "suggestedChanges": {
    "riskScore": "LOW|MEDIUM|HIGH",
    "riskRationale": "assessment reasoning",
    "riskFlags": ["specific risk flags identified"],
    "therapistNote": "SOAP-style clinical note for this session",
    "clientSummary": "warm, empathetic summary for the client",
    "clinicalGoals": [
      {"id": "goal id (keep existing ids)", "description": "clinical goal",
       "status": "IN_PROGRESS|COMPLETED|DEFERRED", "targetDate": "e.g. '3 months'"}
    ],
    "clientGoals": [
      {"id": "same id as the clinical goal", "description": "simplified version for client",
       "emoji": "single relevant emoji"}
    ],
    "primaryDiagnosis": {"code": "ICD-10 code", "description": "diagnosis"} or null,
    "secondaryDiagnoses": [],
    "clientDiagnosis": {"summary": "patient-friendly explanation", "hidden": true} or null,
    "interventions": ["interventions in use"],
    "homework": "actionable tasks for next session"
  }
}"""


def build_system_prompt(modality: str, is_new_patient: bool) -> str:
    """System prompt for the configured clinical modality."""
    if is_new_patient:
        mode = """### NEW PATIENT MODE
This is a new patient without an existing treatment plan. You will:
1. Analyze the intake session to understand presenting concerns
2. Suggest initial goals based on what was discussed
3. Identify risk factors and set initial risk level
4. Do NOT make up information not present in the transcript"""
    else:
        mode = """### EXISTING PATIENT MODE
This patient has an existing treatment plan. You will:
1. Analyze how this session relates to EXISTING goals
2. Change goal status ONLY if clearly warranted by session content
3. Add NEW goals ONLY if genuinely new issues emerged
4. Keep existing goal ids and descriptions unless factually incorrect
5. PRESERVE continuity - therapy is a long journey, not reset each session"""

    return f"""You are an AI Clinical Assistant specializing in {modality} therapy. Your role is to analyze therapy sessions and propose updates to treatment plans for a clinician to review.

## CRITICAL INSTRUCTIONS

{mode}

## YOUR OUTPUT MUST BE STRUCTURED JSON

Return a JSON object with EXACTLY this structure. "suggestedChanges" is the
complete proposed plan, not a delta:

{_OUTPUT_CONTRACT}

## {modality.upper()} FRAMEWORK

Use {modality} principles when framing goals and interventions and when writing clinical notes.
Common {modality} interventions: {modality_interventions(modality)}

## IMPORTANT GUIDELINES

1. **Be Conservative**: Only change goal status with clear evidence from the session
2. **Risk Assessment**: Always assess risk based on THIS session's content
3. **Client Language**: Client-facing content should be warm, non-clinical and encouraging
4. **No Fabrication**: Only reference what is actually in the transcript"""


def build_user_prompt(
    transcript: str,
    current_plan: Optional[PlanContent],
    patient_context: Optional[PatientContext],
) -> str:
    """User prompt with plan, history and transcript. PHI - never logged."""
    parts: list[str] = []

    if current_plan is None:
        parts.append(f"## PATIENT STATUS: NEW PATIENT (No existing plan)\n\n{NEW_PATIENT_PERSONA}")
    else:
        plan_json = json.dumps(current_plan.to_storage(), indent=2, ensure_ascii=False)
        parts.append(f"## CURRENT TREATMENT PLAN\n\n```json\n{plan_json}\n```")

    if patient_context is not None:
        summaries = patient_context.recent_session_summaries
        if summaries:
            lines = [
                f"### {index} session(s) ago:\n{summary}"
                for index, summary in enumerate(summaries, start=1)
            ]
            parts.append("## RECENT SESSION CONTEXT\n\n" + "\n\n".join(lines))
        if patient_context.prior_transcript_excerpt:
            parts.append(
                "## PREVIOUS SESSION (EXCERPT)\n\n" + patient_context.prior_transcript_excerpt
            )

    parts.append(f"## SESSION TRANSCRIPT\n\n{transcript}")

    if current_plan is None:
        task = "Since this is a new patient, focus on creating appropriate initial goals and assessments."
    else:
        task = ("Focus on what CHANGED or PROGRESSED in this session relative to the existing plan. "
                "Be conservative with status changes.")
    parts.append(f"## YOUR TASK\n\nAnalyze this session and provide your structured response as JSON.\n{task}")

    return "\n\n".join(parts)
