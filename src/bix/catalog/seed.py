"""Default task catalog and quiz question bank."""

from __future__ import annotations

import logging

from sqlalchemy.ext.asyncio import AsyncSession

from bix.db.models import QuizQuestion, Task

logger = logging.getLogger(__name__)

TASK_SEED_DATA: list[dict] = [
    {
        "id": "task_social_1",
        "title": "Follow BixGain on Twitter",
        "description": "Follow our official Twitter account for the latest updates.",
        "category": "social",
        "task_type": "one_time",
        "reward_amount": 50,
        "xp_reward": 25,
        "link": "https://twitter.com/bixgain",
    },
    {
        "id": "task_social_2",
        "title": "Join Telegram Group",
        "description": "Join our active Telegram community.",
        "category": "social",
        "task_type": "one_time",
        "reward_amount": 50,
        "xp_reward": 25,
        "link": "https://t.me/bixgain",
    },
    {
        "id": "task_social_3",
        "title": "Retweet Pinned Post",
        "description": "Retweet our latest pinned tweet to spread the word.",
        "category": "social",
        "task_type": "one_time",
        "reward_amount": 75,
        "xp_reward": 40,
        "link": "https://twitter.com/bixgain",
    },
    {
        "id": "task_watch_1",
        "title": "Watch Tutorial Video",
        "description": "Watch our platform walkthrough video.",
        "category": "watch",
        "task_type": "one_time",
        "reward_amount": 100,
        "xp_reward": 50,
        "link": "https://youtube.com/@bixgain",
    },
    {
        "id": "task_daily_1",
        "title": "Daily Login Bonus",
        "description": "Log in every day to earn bonus tokens.",
        "category": "daily",
        "task_type": "daily",
        "reward_amount": 25,
        "xp_reward": 10,
    },
    {
        "id": "task_milestone_1",
        "title": "Reach Level 5",
        "description": "Advance your miner to Level 5.",
        "category": "milestone",
        "task_type": "one_time",
        "reward_amount": 500,
        "xp_reward": 250,
        "required_level": 5,
        "unlock_metric": "level",
        "unlock_threshold": 5,
    },
    {
        "id": "task_referral_1",
        "title": "Invite 3 Friends",
        "description": "Refer 3 new miners to the platform.",
        "category": "referral",
        "task_type": "one_time",
        "reward_amount": 300,
        "xp_reward": 150,
        "unlock_threshold": 3,
    },
]


def _question(qid: str, text: str, options: list[str], correct: int, difficulty: str) -> dict:
    rewards = {"easy": 5, "medium": 8, "hard": 10}
    return {
        "id": qid,
        "question": text,
        "options": options,
        "correct_option": correct,
        "reward_amount": rewards[difficulty],
        "difficulty": difficulty,
    }


QUIZ_SEED_DATA: list[dict] = [
    _question("q1", "What is Bitcoin?", ["A digital currency", "A physical coin", "A bank", "A website"], 0, "easy"),
    _question(
        "q2", "Who created Bitcoin?", ["Vitalik Buterin", "Satoshi Nakamoto", "Elon Musk", "Mark Zuckerberg"], 1, "easy"
    ),
    _question(
        "q3",
        "What is a blockchain?",
        ["A chain of blocks", "A distributed ledger", "A type of database", "All of the above"],
        3,
        "easy",
    ),
    _question(
        "q4",
        "What does DeFi stand for?",
        ["Decentralized Finance", "Digital Finance", "Defined Finance", "Deferred Finance"],
        0,
        "easy",
    ),
    _question(
        "q5",
        "What is an NFT?",
        ["Non-Fungible Token", "New Financial Tool", "Network File Transfer", "Node Function Type"],
        0,
        "easy",
    ),
    _question(
        "q6",
        "What is Ethereum primarily known for?",
        ["Smart contracts", "Being faster than Bitcoin", "Having no fees", "Being a stablecoin"],
        0,
        "medium",
    ),
    _question(
        "q7",
        "What is a crypto wallet?",
        ["A physical wallet for coins", "Software to store private keys", "A bank account", "A trading platform"],
        1,
        "medium",
    ),
    _question(
        "q8",
        "What consensus mechanism does Bitcoin use?",
        ["Proof of Stake", "Proof of Work", "Delegated Proof of Stake", "Proof of Authority"],
        1,
        "medium",
    ),
    _question(
        "q9",
        "What is gas in Ethereum?",
        ["Fuel for mining machines", "Transaction fee unit", "A type of token", "A smart contract language"],
        1,
        "medium",
    ),
    _question(
        "q10",
        "What is a DAO?",
        [
            "Decentralized Autonomous Organization",
            "Digital Asset Offering",
            "Direct Access Online",
            "Distributed Application Overlay",
        ],
        0,
        "medium",
    ),
    _question(
        "q11",
        "What is the EVM?",
        ["Ethereum Virtual Machine", "Electronic Value Monitor", "Extended Verification Module", "Encrypted Vault Manager"],
        0,
        "hard",
    ),
    _question(
        "q12",
        "What is a Merkle Tree used for in blockchain?",
        ["Storing user passwords", "Efficient data verification", "Mining new blocks", "Encrypting transactions"],
        1,
        "hard",
    ),
    _question(
        "q13",
        "What is the Byzantine Generals Problem?",
        [
            "A cryptography algorithm",
            "A consensus challenge in distributed systems",
            "A type of smart contract bug",
            "A mining difficulty adjustment",
        ],
        1,
        "hard",
    ),
    _question(
        "q14",
        "What is impermanent loss?",
        ["Loss from hacking", "Loss in LP value vs holding", "Transaction fee losses", "Gas price fluctuations"],
        1,
        "hard",
    ),
    _question(
        "q15",
        "What is a zero-knowledge proof?",
        [
            "Proving knowledge without revealing it",
            "An empty blockchain block",
            "A transaction with no fees",
            "A wallet with zero balance",
        ],
        0,
        "hard",
    ),
]


async def seed_catalog(db: AsyncSession) -> tuple[int, int]:
    """Insert any missing default tasks and questions. Existing rows are left as admins edited them.

    Returns:
        Tuple of (tasks inserted, questions inserted).
    """
    tasks_added = 0
    for data in TASK_SEED_DATA:
        if await db.get(Task, data["id"]) is None:
            db.add(Task(is_active=True, **data))
            tasks_added += 1

    questions_added = 0
    for data in QUIZ_SEED_DATA:
        if await db.get(QuizQuestion, data["id"]) is None:
            db.add(QuizQuestion(**data))
            questions_added += 1

    await db.commit()
    logger.info("Seeded %d tasks and %d quiz questions", tasks_added, questions_added)
    return tasks_added, questions_added
