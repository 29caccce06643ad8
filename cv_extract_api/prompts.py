"""Extraction prompt sent alongside the PDF, and the canned mock reply."""

import json

EXTRACTION_PROMPT = """Extract CV data into this exact JSON structure:

{
  "cvData": {
    "personalInfo": {
      "fullName": "extract from header/contact",
      "professionalTitle": "current job title",
      "phone": "find phone patterns",
      "email": "find email patterns",
      "location": "city/state from address",
      "linkedIn": "linkedin url if present",
      "portfolio": "portfolio/github url if present",
      "summary": "extract from summary/profile sections"
    },
    "coreCompetencies": {
      "technicalSkills": "extract all technical skills/tools",
      "softSkills": "extract interpersonal/soft skills"
    },
    "certifications": [],
    "languages": [],
    "experience": [],
    "education": [],
    "additionalInfo": {
      "projects": "",
      "publications": "",
      "professionalMemberships": "",
      "volunteerExperience": ""
    }
  },
  "jobData": {
    "jobIdentification": {"jobTitle": "based on experience"},
    "companyInfo": {"industryType": "inferred from background"},
    "positionDetails": {"summary": "role description"},
    "candidateRequirements": {"essentialSkills": "from cv skills"},
    "compensationAndBenefits": {"estimatedRange": "industry standard"}
  }
}

CRITICAL: Return ONLY valid JSON. No explanations, no markdown, no other text."""


_MOCK_EXTRACTION = {
    "cvData": {
        "personalInfo": {
            "fullName": "Mock Candidate",
            "professionalTitle": "Software Engineer",
            "phone": "",
            "email": "mock.candidate@example.com",
            "location": "Remote",
            "linkedIn": "",
            "portfolio": "",
            "summary": "This is a mock extraction (MOCK_AI=true).",
        },
        "coreCompetencies": {
            "technicalSkills": "Python, FastAPI",
            "softSkills": "Communication",
        },
        "certifications": [],
        "languages": [],
        "experience": [],
        "education": [],
        "additionalInfo": {
            "projects": "",
            "publications": "",
            "professionalMemberships": "",
            "volunteerExperience": "",
        },
    },
    "jobData": {
        "jobIdentification": {"jobTitle": "Software Engineer"},
        "companyInfo": {"industryType": "Technology"},
        "positionDetails": {"summary": "Mock posting generated without calling a model."},
        "candidateRequirements": {"essentialSkills": "Python, FastAPI"},
        "compensationAndBenefits": {"estimatedRange": "n/a"},
    },
}

# Wrapped in a fence like real model output so the normalizer path is exercised
MOCK_MODEL_RESPONSE = "```json\n" + json.dumps(_MOCK_EXTRACTION, indent=2) + "\n```"
