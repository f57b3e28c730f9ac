from __future__ import annotations

from app.pipeline.models import JobContext

FEEDBACK_RESPONSE_FORMAT = """
  interface Feedback {
    overallScore: number; //max 100
    ATS: {
      score: number;
      tips: { type: "good" | "improve"; tip: string; }[];
    };

    toneAndStyle: CategoryFeedback;
    content: CategoryFeedback;
    structure: CategoryFeedback;
    skills: CategoryFeedback;

    mockInterview: {
      questions: {
        question: string;
        whyTheyAsk: string;
        strongAnswer: string;
        followUps?: string[];
      }[]; // 10-12 items, related to both the job description and the resume
    };
  }

  interface CategoryFeedback {
    score: number; //max 100
    tips: {
      type: "good" | "improve";
      tip: string; // short title
      explanation: string; // detailed explanation
    }[]; // 3-4 tips

    problems: {
      snippet: string;          // exact text or a short paraphrase from the resume
      reason: string;           // why this is a problem
      suggestion: string;       // how to fix
      severity?: "low" | "med" | "high";
      page?: number;            // starts at 1 if known
      line?: number;            // rough line number
      sectionGuess?: string;    // e.g. "Experience", "Summary"
      source?: "JD" | "ATS";    // JD alignment or ATS best practice
    }[]; // 3-8 per category if applicable
  }"""


def build_feedback_prompt(resume_text: str, context: JobContext) -> str:
    job_title = context.job_title or "Not provided"
    job_description = context.job_description or "Not provided"
    company = f"The company is: {context.company_name}\n" if context.company_name else ""
    return (
        "You are an expert in ATS (Applicant Tracking System) and resume analysis.\n"
        "Please analyze and rate this resume and suggest how to improve it.\n"
        "The rating can be low if the resume is bad.\n"
        "Be thorough and detailed. Point out any mistakes or areas for improvement.\n"
        "If there is a lot to improve, do not hesitate to give low scores.\n"
        "If provided, take the job description into consideration.\n"
        f"{company}"
        f"The job title is: {job_title}\n"
        f"The job description is: {job_description}\n"
        f"Provide the feedback using the following format: {FEEDBACK_RESPONSE_FORMAT}\n"
        "Return the analysis as a JSON object, without any other text and without the backticks.\n"
        "Focus problems[].snippet on short, recognizable text spans from the resume where possible.\n"
        "Generate mockInterview.questions that reflect resume strengths and weaknesses and the job "
        "description; ensure there are 10-12.\n"
        'Tag every improvement suggestion with source: "JD" or "ATS".\n'
        "Do not include any other text or comments.\n\n"
        f"RESUME TEXT:\n{resume_text}"
    )


def build_markdown_prompt(resume_text: str) -> str:
    return (
        "Convert the following resume text into a clean, well-structured Markdown format "
        "suitable for a resume editor.\n\n"
        f"RESUME TEXT:\n{resume_text}\n\n"
        "REQUIREMENTS:\n"
        "1. Extract and organize all information into proper sections\n"
        "2. Use standard resume section headers (## Experience, ## Education, etc.)\n"
        "3. Format dates consistently as *Month Year - Month Year* or *Month Year - Present*\n"
        "4. Use bullet points (- ) for achievements and responsibilities\n"
        "5. Bold job titles and company names using **text**\n"
        "6. Include a YAML front matter section at the top with name, email, phone, and "
        "location, linkedin, github when available\n"
        "7. Preserve all quantifiable achievements and metrics\n\n"
        "OUTPUT FORMAT:\n"
        "Return ONLY the markdown content, no explanations or additional text.\n\n"
        "Example structure:\n"
        "---\n"
        "name: John Doe\n"
        "email: john@example.com\n"
        "phone: (555) 123-4567\n"
        "---\n\n"
        "## Summary\n"
        "Brief professional summary...\n\n"
        "## Experience\n"
        "**Software Engineer** | *Company Name* | *Jan 2020 - Present*\n"
        "- Achievement with metrics\n\n"
        "Begin conversion:"
    )


def build_jd_extraction_prompt(jd_text: str) -> str:
    return (
        "You are a job description analyzer. Extract the following information from this "
        "Job Description and return ONLY a valid JSON object:\n\n"
        "1. jobTitle: The job position title (string, required)\n"
        '2. companyName: The company name or "Not specified" if not found (string)\n'
        "3. jobDescription: The complete job description text as provided (string, required)\n\n"
        "IMPORTANT:\n"
        "- Return ONLY valid JSON, no markdown, no explanations\n"
        "- Keep jobDescription as the original text provided\n"
        "- Do NOT include any text before or after the JSON\n\n"
        f"Job Description Text:\n{jd_text}\n\n"
        "Return the JSON object now:"
    )
