from typing import List

from .models import Question

# Bundled question set used when no quiz is selected or the quiz has no questions.
FALLBACK_QUESTIONS = [
    {
        "id": 1,
        "question": {"en": "What is the capital of France?", "ar": "ما هي عاصمة فرنسا؟"},
        "options": {
            "en": ["Paris", "London", "Berlin", "Madrid"],
            "ar": ["باريس", "لندن", "برلين", "مدريد"],
        },
        "correct_answer": 0,
    },
    {
        "id": 2,
        "question": {"en": "Which planet is known as the Red Planet?", "ar": "أي كوكب يُعرف بالكوكب الأحمر؟"},
        "options": {
            "en": ["Venus", "Mars", "Jupiter", "Saturn"],
            "ar": ["الزهرة", "المريخ", "المشتري", "زحل"],
        },
        "correct_answer": 1,
    },
    {
        "id": 3,
        "question": {"en": "How many days are there in a leap year?", "ar": "كم عدد أيام السنة الكبيسة؟"},
        "options": {
            "en": ["364", "365", "366", "367"],
            "ar": ["٣٦٤", "٣٦٥", "٣٦٦", "٣٦٧"],
        },
        "correct_answer": 2,
    },
    {
        "id": 4,
        "question": {"en": "What is the largest ocean on Earth?", "ar": "ما هو أكبر محيط على الأرض؟"},
        "options": {
            "en": ["Atlantic Ocean", "Indian Ocean", "Arctic Ocean", "Pacific Ocean"],
            "ar": ["المحيط الأطلسي", "المحيط الهندي", "المحيط المتجمد الشمالي", "المحيط الهادئ"],
        },
        "correct_answer": 3,
    },
    {
        "id": 5,
        "question": {"en": "What is the chemical symbol for gold?", "ar": "ما هو الرمز الكيميائي للذهب؟"},
        "options": {
            "en": ["Au", "Ag", "Gd", "Go"],
            "ar": ["Au", "Ag", "Gd", "Go"],
        },
        "correct_answer": 0,
    },
    {
        "id": 6,
        "question": {"en": "Which is the longest river in Africa?", "ar": "ما هو أطول نهر في أفريقيا؟"},
        "options": {
            "en": ["Congo", "Nile", "Niger", "Zambezi"],
            "ar": ["الكونغو", "النيل", "النيجر", "الزامبيزي"],
        },
        "correct_answer": 1,
    },
    {
        "id": 7,
        "question": {"en": "How many continents are there?", "ar": "كم عدد القارات؟"},
        "options": {
            "en": ["5", "6", "7", "8"],
            "ar": ["٥", "٦", "٧", "٨"],
        },
        "correct_answer": 2,
    },
    {
        "id": 8,
        "question": {"en": "Which gas do plants absorb from the air?", "ar": "ما الغاز الذي تمتصه النباتات من الهواء؟"},
        "options": {
            "en": ["Oxygen", "Nitrogen", "Hydrogen", "Carbon dioxide"],
            "ar": ["الأكسجين", "النيتروجين", "الهيدروجين", "ثاني أكسيد الكربون"],
        },
        "correct_answer": 3,
    },
]


def fallback_questions() -> List[Question]:
    return [Question(**q) for q in FALLBACK_QUESTIONS]
