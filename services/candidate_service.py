import csv
from datetime import datetime, timedelta, timezone
from db.repository import repository
from services.regional_service import GOVERNORATES
from utils.logger import logger
from config import INFLUENCE_WINDOW_DAYS, TRENDING_INFLUENCE_THRESHOLD

NAME_COLUMNS = ('name', 'name_ku_sorani', 'name_ar', 'name_en')
CSV_COLUMNS = ('name', 'name_ku_sorani', 'name_ar', 'name_en', 'party', 'governorate', 'position')


def mention_influence(mention):
    """
    Engagement weighted by sentiment: (likes*0.1 + comments*0.2 + shares*0.3) * (1 + score*0.5).
    """
    engagement = (mention.get('likes') or 0) * 0.1 \
        + (mention.get('comments') or 0) * 0.2 \
        + (mention.get('shares') or 0) * 0.3
    score = mention.get('sentiment_score')
    multiplier = 1 + score * 0.5 if score else 1
    return engagement * multiplier


class CandidateService:
    def search_candidates(self, query, limit=10):
        if not query or not query.strip():
            return []
        return repository.search_candidates(query.strip(), limit)

    def upsert_candidate(self, candidate):
        """
        Stores a candidate. priority_level and region_type default to the
        governorate's collection priority.
        """
        governorate = (candidate.get('governorate') or '').strip().lower().replace(' ', '_')
        region = GOVERNORATES.get(governorate, {})
        record = dict(candidate)
        record.setdefault('priority_level', region.get('priority', 6))
        record.setdefault('region_type', region.get('type', 'other'))
        return repository.upsert_candidate(record)

    def seed_from_csv(self, path):
        """
        Loads candidates from a CSV with a header row. Only `name` is required.
        """
        loaded = 0
        with open(path, 'r', encoding='utf-8-sig', newline='') as f:
            for row in csv.DictReader(f):
                record = {col: (row.get(col) or '').strip() or None for col in CSV_COLUMNS}
                if not record['name']:
                    logger.warn(f"Skipping candidate row without a name: {row}")
                    continue
                self.upsert_candidate(record)
                loaded += 1
        logger.success(f"Loaded {loaded} candidates from {path}")
        return loaded

    def _name_variants(self, candidate):
        return [candidate[col].strip() for col in NAME_COLUMNS if candidate.get(col) and candidate[col].strip()]

    def extract_candidate_mentions(self, content, candidates=None):
        """
        Candidates named in the text. A full name variant always matches; a first name
        matches only when no other stored candidate shares it.
        """
        if not content:
            return []
        candidates = candidates if candidates is not None else repository.all_candidates()
        lowered = content.lower()

        first_names = {}
        for candidate in candidates:
            for variant in self._name_variants(candidate):
                parts = variant.split()
                if len(parts) > 1 and len(parts[0]) >= 3:
                    first_names.setdefault(parts[0].lower(), set()).add(candidate['id'])

        matched = []
        for candidate in candidates:
            variants = self._name_variants(candidate)
            if any(v.lower() in lowered for v in variants):
                matched.append(candidate)
                continue
            for variant in variants:
                first = variant.split()[0].lower()
                if first_names.get(first) == {candidate['id']} and first in lowered.split():
                    matched.append(candidate)
                    break
        return matched

    def update_influence_score(self, candidate_id):
        """
        Average weighted engagement of the candidate's mentions over the influence window.
        """
        try:
            since = datetime.now(timezone.utc) - timedelta(days=INFLUENCE_WINDOW_DAYS)
            mentions = repository.candidate_mentions(candidate_id, since)
            total = sum(mention_influence(m) for m in mentions)
            score = round(total / len(mentions)) if mentions else 0
            newest = max((m['detected_at'] for m in mentions), default=None)
            repository.update_candidate_influence(candidate_id, score, last_activity=newest)
            logger.debug(f"Updated influence score for candidate {candidate_id}: {score}")
            return score
        except Exception as e:
            logger.error(f"Failed to update influence score for candidate {candidate_id}: {e}")
            raise

    def refresh_all_influence(self):
        return {c['id']: self.update_influence_score(c['id']) for c in repository.all_candidates()}

    def is_trending(self, candidate):
        return (candidate.get('influence_score') or 0) > TRENDING_INFLUENCE_THRESHOLD

    def get_top_candidates(self, limit=10, governorates=None):
        candidates = repository.top_candidates(limit, governorates)
        for candidate in candidates:
            candidate['trending'] = self.is_trending(candidate)
        return candidates

    def get_rising_candidates(self, limit=5):
        """
        Growth in percent of mentions in the last 24h over the 24h before.
        A candidate with no previous mentions and some recent ones counts as 100%.
        """
        now = datetime.now(timezone.utc)
        recent = repository.candidate_mention_counts(now - timedelta(hours=24))
        previous = repository.candidate_mention_counts(now - timedelta(hours=48), now - timedelta(hours=24))

        rising = []
        for candidate_id, count in recent.items():
            before = previous.get(candidate_id, 0)
            growth = 100.0 if before == 0 else (count - before) / before * 100
            if growth <= 0:
                continue
            candidate = repository.get_candidate(candidate_id)
            if not candidate:
                continue
            rising.append({
                "id": candidate_id,
                "name": candidate['name'],
                "governorate": candidate.get('governorate'),
                "mentions": count,
                "growth": round(growth, 1)
            })
        rising.sort(key=lambda c: (-c['growth'], -c['mentions']))
        return rising[:limit]


candidate_service = CandidateService()
